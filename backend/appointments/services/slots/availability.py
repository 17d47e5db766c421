# backend/appointments/services/slots/availability.py
"""
Free slots for a date and appointment type.

Takes into account:
- Every availability window configured for the date/type
- Existing appointments that are not CANCELLED (exact (start, end) match)
- The current clock time, when the date is today
"""

from datetime import date, datetime

from sqlalchemy.orm import Session

from ...repositories import AppointmentStore, WindowRepository
from .calculator import Slot, slots_from_windows
from .config import BookingConfig, get_booking_config, time_str_to_minutes


def get_availability(
    db: Session,
    target_date: date,
    type_code: str,
    config: BookingConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Calculate free slots.

    Returns:
        {"date": "YYYY-MM-DD", "slots": [Slot, ...]} sorted by start.
    """
    config = config or get_booking_config()
    now = now or config.now()
    date_str = target_date.isoformat()

    # Step 1: Windows for the day
    windows = WindowRepository(db).list_windows(date_str, type_code)
    if not windows:
        return {"date": date_str, "slots": []}

    # Step 2: Candidate slots of all windows
    candidates = slots_from_windows(windows)
    if not candidates:
        return {"date": date_str, "slots": []}

    # Step 3: Occupied pairs
    taken = AppointmentStore(db).list_active(date_str, type_code)
    busy = {Slot(a.start_time, a.end_time) for a in taken}

    # Step 4: Drop occupied, dedupe slots shared by adjoining windows
    free: list[Slot] = []
    seen: set[Slot] = set()
    for slot in candidates:
        if slot in busy or slot in seen:
            continue
        seen.add(slot)
        free.append(slot)

    # Step 5: today, only slots that end after now
    if target_date == now.date():
        now_min = now.hour * 60 + now.minute
        free = [s for s in free if time_str_to_minutes(s.end) > now_min]

    # Step 6
    free.sort(key=lambda s: (s.start, s.end))

    return {"date": date_str, "slots": free}
