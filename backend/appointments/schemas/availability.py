# backend/appointments/schemas/availability.py
"""
Pydantic schemas for availability API.
"""

from pydantic import BaseModel


class SlotInfo(BaseModel):
    """A single free slot."""
    start: str  # "HH:MM"
    end: str

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    """Free slots for one date and appointment type."""
    date: str
    slots: list[SlotInfo]

    model_config = {"from_attributes": True}
