# backend/appointments/services/slots/config.py
"""
Booking configuration and clock-time helpers.

All times are "HH:MM" strings on a single day in one fixed time zone.
Arithmetic is done in integer minutes since midnight.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from ...config import settings


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking rules.

    Attributes:
        shipping_limit_per_week: Max live SHIPPING requests per identity per week
        timezone: IANA zone name every date/time is interpreted in
    """
    shipping_limit_per_week: int = 3
    timezone: str = "America/Bogota"

    def __post_init__(self):
        """Validate configuration."""
        if self.shipping_limit_per_week < 1:
            raise ValueError(
                f"shipping_limit_per_week must be positive, got {self.shipping_limit_per_week}"
            )
        ZoneInfo(self.timezone)

    def now(self) -> datetime:
        return local_now(self.timezone)


@lru_cache
def get_booking_config() -> BookingConfig:
    """Get booking configuration (singleton, built from settings)."""
    return BookingConfig(
        shipping_limit_per_week=settings.booking_limit_shipping_per_week,
        timezone=settings.timezone,
    )


def time_str_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight."""
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time_str(total: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return minutes_to_time_str(time_str_to_minutes(value) + minutes)


def minutes_between(start: str | None, end: str | None) -> int | None:
    """Signed span from start to end in minutes (same day), None if either is missing."""
    if not start or not end:
        return None
    return time_str_to_minutes(end) - time_str_to_minutes(start)


def local_now(tz_name: str) -> datetime:
    """Current wall-clock time in the configured zone, as a naive datetime."""
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def week_bounds(day: date) -> tuple[date, date]:
    """Sunday..Saturday calendar week containing day."""
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    return start, start + timedelta(days=6)
