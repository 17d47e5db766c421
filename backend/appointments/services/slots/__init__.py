# backend/appointments/services/slots/__init__.py
"""
Slots calculation module.

calculator: window → fixed-size slots (pure)
availability: all windows − occupied appointments − past slots
"""

from .config import BookingConfig, get_booking_config
from .calculator import Slot, generate_slots, slots_from_windows
from .availability import get_availability

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "Slot",
    "generate_slots",
    "slots_from_windows",
    "get_availability",
]
