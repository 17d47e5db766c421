# backend/appointments/services/slots/calculator.py
"""
Slot generation from availability windows.

A window {start_time, end_time, slot_minutes} is cut into back-to-back
blocks of exactly slot_minutes. A trailing remainder shorter than one
block is dropped: 08:00–08:47 at 15 min gives 08:00, 08:15, 08:30 only.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Protocol

from .config import minutes_to_time_str, time_str_to_minutes


@dataclass(frozen=True, order=True)
class Slot:
    """Bookable block of clock time. Equal iff (start, end) match."""
    start: str  # "HH:MM"
    end: str

    def as_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}


class WindowLike(Protocol):
    start_time: str
    end_time: str
    slot_minutes: int


def generate_slots(window: WindowLike) -> Iterator[Slot]:
    """Yield the fixed-size slots of one window, in order."""
    step = int(window.slot_minutes)
    if step <= 0:
        return

    end = time_str_to_minutes(window.end_time)
    cursor = time_str_to_minutes(window.start_time)

    while True:
        nxt = cursor + step
        if nxt < end:
            yield Slot(minutes_to_time_str(cursor), minutes_to_time_str(nxt))
            cursor = nxt
            continue

        # Last block must land exactly on the window end
        if end - cursor == step:
            yield Slot(minutes_to_time_str(cursor), minutes_to_time_str(end))
        break


def slots_from_windows(windows: Iterable[WindowLike]) -> list[Slot]:
    """Concatenate slots of every window (duplicates are kept)."""
    slots: list[Slot] = []
    for window in windows:
        slots.extend(generate_slots(window))
    return slots
