# backend/appointments/routers/appointments.py
# Admin routes carry no auth here; the gateway in front of the API enforces it.

import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_admin_recipients, get_config, get_notifier
from ..errors import BookingError, ErrorKind
from ..repositories import AppointmentStore
from ..schemas.appointments import (
    AppointmentCreate,
    AppointmentCreated,
    AppointmentRead,
    ShippingOptions,
    ShipRequest,
    StatusChange,
)
from ..services import booking
from ..services.events import Notifier
from ..services.slots import BookingConfig

router = APIRouter(prefix="/api", tags=["appointments"])


@router.post(
    "/appointments",
    response_model=AppointmentCreated,
    status_code=status.HTTP_201_CREATED,
)
def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_config),
    notifier: Notifier = Depends(get_notifier),
    admin_recipients: list[str] = Depends(get_admin_recipients),
):
    appt_id = booking.create_appointment(
        db, data, config=config, notifier=notifier, admin_recipients=admin_recipients
    )
    return AppointmentCreated(id=appt_id)


@router.get("/shipping-options", response_model=ShippingOptions)
def read_shipping_options(city: str = Query("")):
    return ShippingOptions(city=city, options=booking.shipping_options(city))


@router.get("/admin/appointments", response_model=list[AppointmentRead])
def list_appointments(
    date: Optional[datetime.date] = Query(None),
    db: Session = Depends(get_db),
):
    if date is None:
        raise BookingError(ErrorKind.MISSING_DATE)
    return AppointmentStore(db).list_for_date(date.isoformat())


@router.get("/admin/appointments/{id}", response_model=AppointmentRead)
def get_appointment(id: int, db: Session = Depends(get_db)):
    obj = AppointmentStore(db).get(id)
    if not obj:
        raise HTTPException(status_code=404, detail="Not found")
    return obj


@router.patch("/admin/appointments/{id}/status", response_model=AppointmentRead)
def patch_status(
    id: int,
    data: StatusChange,
    db: Session = Depends(get_db),
):
    return booking.change_status(db, id, data.status)


@router.patch("/admin/appointments/{id}/ship", response_model=AppointmentRead)
def patch_ship(
    id: int,
    data: ShipRequest,
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_config),
    notifier: Notifier = Depends(get_notifier),
    admin_recipients: list[str] = Depends(get_admin_recipients),
):
    return booking.mark_shipped(
        db,
        id,
        tracking_number=data.tracking_number,
        shipping_cost=data.shipping_cost,
        trip_link=data.shipping_trip_link,
        config=config,
        notifier=notifier,
        admin_recipients=admin_recipients,
    )
