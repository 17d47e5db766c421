"""
Appointment reminder dispatcher.

Every minute, for each lead bucket (1h, 30m), claims CONFIRMED TRYOUT /
PICKUP appointments for today whose start is between lead-1 and lead
minutes away, and queues a reminder for each.

Claiming is one conditional UPDATE ... RETURNING that also stamps the
bucket marker (reminded_1h_at / reminded_30m_at), so a row is handed to
exactly one tick of one dispatcher instance. A failed delivery does not
unclaim: a missed courtesy reminder beats a reminder storm.

Runs as an asyncio task in the app lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..repositories import REMINDER_MARKERS, AppointmentStore
from .events import Notifier
from .notifications import render_reminder
from .slots.config import local_now, minutes_to_time_str

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 60  # seconds between ticks
TOLERANCE_MINUTES = 1  # matches the tick interval

END_OF_DAY = "24:00"  # sorts after every HH:MM of the day


@dataclass(frozen=True)
class LeadBucket:
    name: str
    lead_minutes: int
    marker: str

    def __post_init__(self):
        if self.marker not in REMINDER_MARKERS:
            raise ValueError(f"Unknown reminder marker: {self.marker}")
        if self.lead_minutes < TOLERANCE_MINUTES:
            raise ValueError(f"lead_minutes must be >= {TOLERANCE_MINUTES}")


DEFAULT_BUCKETS = (
    LeadBucket("1h", 60, "reminded_1h_at"),
    LeadBucket("30m", 30, "reminded_30m_at"),
)


def bucket_bounds(now: datetime, lead_minutes: int) -> Optional[tuple[str, str]]:
    """
    Start-time range [low, high] due for a bucket at `now` (minute precision).

    None when the whole range falls on the next day.
    """
    low = now + timedelta(minutes=lead_minutes - TOLERANCE_MINUTES)
    high = now + timedelta(minutes=lead_minutes)

    if low.date() != now.date():
        return None

    low_str = minutes_to_time_str(low.hour * 60 + low.minute)
    if high.date() != now.date():
        return low_str, END_OF_DAY
    return low_str, minutes_to_time_str(high.hour * 60 + high.minute)


class ReminderDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        buckets: tuple[LeadBucket, ...] = DEFAULT_BUCKETS,
        timezone: str = "America/Bogota",
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.buckets = buckets
        self.timezone = timezone

    def tick(self, now: datetime | None = None) -> dict[str, list[int]]:
        """
        Run one pass over all buckets.

        Returns:
            {bucket name: ids claimed on this tick}
        """
        now = (now or local_now(self.timezone)).replace(second=0, microsecond=0)
        claimed: dict[str, list[int]] = {}

        for bucket in self.buckets:
            try:
                claimed[bucket.name] = self._run_bucket(bucket, now)
            except Exception:
                # Rows stay unclaimed; next tick picks them up
                logger.exception(f"Reminder claim failed for bucket={bucket.name}")
                claimed[bucket.name] = []

        return claimed

    def _run_bucket(self, bucket: LeadBucket, now: datetime) -> list[int]:
        bounds = bucket_bounds(now, bucket.lead_minutes)
        if bounds is None:
            return []
        low, high = bounds

        db = self.session_factory()
        try:
            appointments = AppointmentStore(db).claim_due(
                today=now.date().isoformat(),
                low=low,
                high=high,
                marker=bucket.marker,
                claimed_at=now.isoformat(sep=" ", timespec="seconds"),
            )
        finally:
            db.close()

        for appt in appointments:
            self._deliver(appt, bucket)

        return [appt.id for appt in appointments]

    def _deliver(self, appt, bucket: LeadBucket) -> None:
        try:
            queued = self.notifier.notify(
                f"booking_reminder_{bucket.name}",
                appt.customer_email,
                render_reminder(appt, bucket.lead_minutes),
                appointment_id=appt.id,
            )
        except Exception:
            logger.exception(f"Error sending {bucket.name} reminder for appointment {appt.id}")
            return

        if queued:
            logger.info(
                f"booking_reminder_{bucket.name} queued for appointment={appt.id} "
                f"(starts at {appt.start_time})"
            )
        else:
            logger.warning(f"{bucket.name} reminder for appointment={appt.id} dropped")


async def reminder_checker_loop(
    dispatcher: ReminderDispatcher,
    interval: int = CHECK_INTERVAL,
) -> None:
    """Periodic loop driving dispatcher.tick once per interval."""
    logger.info("reminder_checker_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(dispatcher.tick)
            except asyncio.CancelledError:
                logger.info("reminder_checker_loop cancelled")
                raise
            except Exception:
                logger.exception("reminder_checker_loop error")

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        pass
