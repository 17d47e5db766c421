# backend/appointments/schemas/appointments.py

import re
import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

TypeCode = Literal["TRYOUT", "PICKUP", "SHIPPING"]
Status = Literal["CONFIRMED", "SHIPPED", "DONE", "CANCELLED", "NO_SHOW"]


class AppointmentCreate(BaseModel):
    """
    Public booking request.

    Required-ness is checked by the booking service so a missing field
    comes back as MISSING_FIELDS rather than a schema error.
    """
    type_code: Optional[TypeCode] = None
    date: Optional[datetime.date] = None
    start_time: Optional[str] = None  # "HH:MM"
    end_time: Optional[str] = None    # defaults to start + window slot size

    product: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_id_number: Optional[str] = None
    delivery_method: Optional[Literal["IN_PERSON", "SHIPPING"]] = None
    notes: Optional[str] = None

    shipping_address: Optional[str] = None
    shipping_neighborhood: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_carrier: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        value = value.strip()
        if not TIME_RE.match(value):
            raise ValueError("time must be HH:MM")
        return value


class AppointmentCreated(BaseModel):
    id: int


class AppointmentRead(BaseModel):
    id: int
    type_code: str
    date: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    status: str

    product: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: str
    customer_id_number: Optional[str] = None
    delivery_method: str
    notes: Optional[str] = None

    shipping_address: Optional[str] = None
    shipping_neighborhood: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_carrier: Optional[str] = None
    shipping_cost: Optional[float] = None
    tracking_number: Optional[str] = None
    shipping_trip_link: Optional[str] = None
    shipped_at: Optional[str] = None

    reminded_1h_at: Optional[str] = None
    reminded_30m_at: Optional[str] = None
    created_at: Optional[str] = None

    model_config = {"from_attributes": True}


class StatusChange(BaseModel):
    status: Status


class ShipRequest(BaseModel):
    tracking_number: Optional[str] = None
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    shipping_trip_link: Optional[str] = None


class ShippingOptions(BaseModel):
    city: str
    options: list[str]
