# backend/appointments/repositories.py
"""
Storage access for windows and appointments.

Every query the booking rules depend on lives here, so the rules can be
read without SQL and the conditional writes stay in one place.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import SlotConflictError
from .models import Appointments, AvailabilityWindows

logger = logging.getLogger(__name__)

REMINDER_MARKERS = ("reminded_1h_at", "reminded_30m_at")
REMINDABLE_TYPES = ("TRYOUT", "PICKUP")

SLOT_INDEX = "uq_appointments_active_slot"
SLOT_INDEX_COLUMNS = next(
    index.columns for index in Appointments.__table__.indexes if index.name == SLOT_INDEX
)


def is_slot_conflict(error: IntegrityError) -> bool:
    """True when the live-slot unique index, and nothing else, rejected a row."""
    message = str(error.orig)
    # PostgreSQL names the index
    if SLOT_INDEX in message:
        return True
    # SQLite lists the indexed columns instead
    columns = ", ".join(f"appointments.{column.name}" for column in SLOT_INDEX_COLUMNS)
    return f"UNIQUE constraint failed: {columns}" in message


class WindowRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_windows(self, date: str, type_code: str) -> list[AvailabilityWindows]:
        return (
            self.db.query(AvailabilityWindows)
            .filter(
                AvailabilityWindows.date == date,
                AvailabilityWindows.type_code == type_code,
            )
            .order_by(AvailabilityWindows.start_time.asc())
            .all()
        )

    def find_containing(
        self, date: str, type_code: str, time_str: str
    ) -> Optional[AvailabilityWindows]:
        """First window with start_time <= time_str < end_time."""
        return (
            self.db.query(AvailabilityWindows)
            .filter(
                AvailabilityWindows.date == date,
                AvailabilityWindows.type_code == type_code,
                AvailabilityWindows.start_time <= time_str,
                AvailabilityWindows.end_time > time_str,
            )
            .order_by(AvailabilityWindows.start_time.asc())
            .first()
        )


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Optional[Appointments]:
        return self.db.get(Appointments, appointment_id)

    def list_active(
        self,
        date: str,
        type_code: str,
        exclude_statuses: Iterable[str] = ("CANCELLED",),
    ) -> list[Appointments]:
        """Timed appointments for date/type whose status is not excluded."""
        return (
            self.db.query(Appointments)
            .filter(
                Appointments.date == date,
                Appointments.type_code == type_code,
                Appointments.status.not_in(list(exclude_statuses)),
                Appointments.start_time.is_not(None),
                Appointments.end_time.is_not(None),
            )
            .all()
        )

    def has_slot_conflict(
        self, type_code: str, date: str, start_time: str, end_time: str
    ) -> bool:
        clash = (
            self.db.query(Appointments.id)
            .filter(
                Appointments.type_code == type_code,
                Appointments.date == date,
                Appointments.status != "CANCELLED",
                Appointments.start_time == start_time,
                Appointments.end_time == end_time,
            )
            .first()
        )
        return clash is not None

    def count_for_identity(
        self,
        *,
        email: str,
        phone: str,
        id_number: Optional[str],
        type_code: str,
        date_from: str,
        date_to: str,
    ) -> int:
        """
        Live appointments of type_code within [date_from, date_to]
        matching the identity on email OR phone OR id number.
        """
        matches = [
            Appointments.customer_email == email,
            Appointments.customer_phone == phone,
        ]
        if id_number:
            matches.append(Appointments.customer_id_number == id_number)

        return (
            self.db.query(Appointments)
            .filter(
                Appointments.type_code == type_code,
                Appointments.status != "CANCELLED",
                Appointments.date >= date_from,
                Appointments.date <= date_to,
                or_(*matches),
            )
            .count()
        )

    def list_for_date(self, date: str) -> list[Appointments]:
        """All appointments of a date, any status, timed ones first."""
        return (
            self.db.query(Appointments)
            .filter(Appointments.date == date)
            .order_by(
                Appointments.start_time.asc().nulls_last(),
                Appointments.created_at.asc(),
                Appointments.id.asc(),
            )
            .all()
        )

    def insert(self, appointment: Appointments) -> int:
        """
        Persist a new appointment and return its id.

        Raises SlotConflictError when the live-slot unique index rejects it;
        any other integrity failure propagates unchanged.
        """
        self.db.add(appointment)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if is_slot_conflict(e):
                raise SlotConflictError(str(e.orig)) from e
            raise
        except Exception:
            self.db.rollback()
            raise
        return appointment.id

    def save(self, appointment: Appointments) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(appointment)

    def claim_due(
        self,
        *,
        today: str,
        low: str,
        high: str,
        marker: str,
        claimed_at: str,
    ) -> list[Appointments]:
        """
        Select and mark due appointments in one UPDATE ... RETURNING.

        Rows come back only to the caller whose statement flipped the
        marker from NULL, so concurrent dispatchers never share a row.
        """
        if marker not in REMINDER_MARKERS:
            raise ValueError(f"Unknown reminder marker: {marker}")
        column = getattr(Appointments, marker)

        stmt = (
            update(Appointments)
            .where(
                Appointments.status == "CONFIRMED",
                Appointments.type_code.in_(REMINDABLE_TYPES),
                Appointments.start_time.is_not(None),
                column.is_(None),
                Appointments.date == today,
                Appointments.start_time >= low,
                Appointments.start_time <= high,
            )
            .values({marker: claimed_at})
            .returning(Appointments)
        )

        try:
            claimed = list(self.db.scalars(stmt))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return sorted(claimed, key=lambda a: (a.date, a.start_time))

    def clear_reminder_marker(self, appointment_id: int, marker: str) -> bool:
        """Operator action: make a bucket eligible again for one appointment."""
        if marker not in REMINDER_MARKERS:
            raise ValueError(f"Unknown reminder marker: {marker}")

        result = self.db.execute(
            update(Appointments)
            .where(Appointments.id == appointment_id)
            .values({marker: None})
        )
        self.db.commit()
        logger.info(f"Reminder marker {marker} cleared for appointment={appointment_id}")
        return result.rowcount > 0
