# backend/appointments/routers/availability.py
"""
GET /api/availability: free slots for a date and TRYOUT / PICKUP.
"""

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_config
from ..schemas.availability import AvailabilityResponse, SlotInfo
from ..services.slots import BookingConfig, get_availability

router = APIRouter(prefix="/api", tags=["availability"])


@router.get("/availability", response_model=AvailabilityResponse)
def read_availability(
    target_date: date = Query(..., alias="date"),
    type_code: Literal["TRYOUT", "PICKUP"] = Query(..., alias="type"),
    db: Session = Depends(get_db),
    config: BookingConfig = Depends(get_config),
):
    result = get_availability(db, target_date, type_code, config)

    return AvailabilityResponse(
        date=result["date"],
        slots=[SlotInfo(start=s.start, end=s.end) for s in result["slots"]],
    )
