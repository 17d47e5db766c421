# backend/appointments/services/booking.py
"""
Booking rules.

create_appointment validates a request against the configured windows
(TRYOUT / PICKUP) or the shipping requirements (SHIPPING), applies the
per-customer limits and persists the appointment as CONFIRMED.

Limits are keyed by identity: lower-cased email OR phone digits OR
id-number digits. Any single match counts as the same customer.
"""

import logging
import re
import unicodedata
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import BookingError, ErrorKind, SlotConflictError
from ..models import Appointments
from ..repositories import AppointmentStore, WindowRepository
from ..schemas.appointments import AppointmentCreate
from .events import Notifier
from .notifications import (
    RenderedMessage,
    render_admin_new_appointment,
    render_confirmation,
    render_shipped,
)
from .slots.config import (
    BookingConfig,
    add_minutes,
    get_booking_config,
    minutes_between,
    time_str_to_minutes,
    week_bounds,
)

logger = logging.getLogger(__name__)

TIMED_TYPES = ("TRYOUT", "PICKUP")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

TRANSITIONS: dict[str, set[str]] = {
    "CONFIRMED": {"SHIPPED", "DONE", "CANCELLED", "NO_SHOW"},
    "SHIPPED": {"DONE"},
}


@dataclass(frozen=True)
class Identity:
    email: str
    phone: str
    id_number: Optional[str] = None

    @classmethod
    def normalize(cls, email: str, phone: str, id_number: Optional[str] = None) -> "Identity":
        return cls(
            email=normalize_email(email),
            phone=to_digits(phone),
            id_number=to_digits(id_number) or None,
        )


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def to_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


@contextmanager
def _storage_guard(db: Session, action: str):
    """Roll back and surface storage failures as SERVER_ERROR."""
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"{action}: storage error")
        raise BookingError(ErrorKind.SERVER_ERROR) from e


# ── Create ───────────────────────────────────────────────────────────────


def create_appointment(
    db: Session,
    data: AppointmentCreate,
    config: BookingConfig | None = None,
    notifier: Notifier | None = None,
    admin_recipients: Iterable[str] = (),
) -> int:
    """
    Validate and persist a new appointment.

    Returns:
        New appointment id.

    Raises:
        BookingError: any rule violation, or SERVER_ERROR on storage failure.
    """
    config = config or get_booking_config()

    identity = _validate_customer(data)

    with _storage_guard(db, "create_appointment"):
        start_time, end_time = None, None
        if data.type_code in TIMED_TYPES:
            start_time, end_time = _resolve_slot(db, data)
        else:
            _validate_shipping(data)

        _enforce_limits(db, data, identity, config)

        appt = Appointments(
            type_code=data.type_code,
            date=data.date.isoformat(),
            start_time=start_time,
            end_time=end_time,
            status="CONFIRMED",
            product=data.product or None,
            customer_name=data.customer_name.strip(),
            customer_email=identity.email,
            customer_phone=identity.phone,
            customer_id_number=identity.id_number,
            delivery_method=data.delivery_method
            or ("SHIPPING" if data.type_code == "SHIPPING" else "IN_PERSON"),
            notes=data.notes or None,
            shipping_address=data.shipping_address or None,
            shipping_neighborhood=data.shipping_neighborhood or None,
            shipping_city=data.shipping_city or None,
            shipping_carrier=data.shipping_carrier or None,
        )

        try:
            appt_id = AppointmentStore(db).insert(appt)
        except SlotConflictError:
            # Lost the race against a concurrent request for the same slot
            logger.info(
                f"Slot {data.type_code} {appt.date} {start_time}-{end_time} "
                f"taken at insert time"
            )
            raise BookingError(ErrorKind.SLOT_TAKEN)

    logger.info(
        f"Appointment created id={appt_id} type={appt.type_code} "
        f"date={appt.date} slot={start_time}-{end_time}"
    )

    _queue_confirmation(appt, notifier, admin_recipients)
    return appt_id


def _validate_customer(data: AppointmentCreate) -> Identity:
    required = {
        "type_code": data.type_code,
        "date": data.date,
        "customer_name": (data.customer_name or "").strip(),
        "customer_email": (data.customer_email or "").strip(),
        "customer_phone": (data.customer_phone or "").strip(),
    }
    missing = [name for name, value in required.items() if not value]
    if missing:
        raise BookingError(ErrorKind.MISSING_FIELDS, {"fields": missing})

    if not EMAIL_RE.match(data.customer_email.strip()):
        raise BookingError(ErrorKind.INVALID_EMAIL)
    if not to_digits(data.customer_phone):
        raise BookingError(ErrorKind.INVALID_PHONE)
    if data.customer_id_number and not to_digits(data.customer_id_number):
        raise BookingError(ErrorKind.INVALID_ID)

    return Identity.normalize(
        data.customer_email, data.customer_phone, data.customer_id_number
    )


def _resolve_slot(db: Session, data: AppointmentCreate) -> tuple[str, str]:
    """Check the requested slot against its window; return (start, end)."""
    if not data.start_time:
        raise BookingError(ErrorKind.MISSING_SLOT)

    date_str = data.date.isoformat()
    start = data.start_time

    window = WindowRepository(db).find_containing(date_str, data.type_code, start)
    if window is None:
        raise BookingError(ErrorKind.OUTSIDE_WINDOW)

    slot_minutes = int(window.slot_minutes)
    end = data.end_time or add_minutes(start, slot_minutes)

    span = minutes_between(start, end)
    if span != slot_minutes:
        raise BookingError(
            ErrorKind.INVALID_SLOT_SIZE,
            {"expected": slot_minutes, "got": span},
        )

    # Start must sit on the window's grid so the pair is a real slot
    offset = (time_str_to_minutes(start) - time_str_to_minutes(window.start_time)) % slot_minutes
    if offset:
        raise BookingError(
            ErrorKind.INVALID_SLOT_SIZE,
            {"expected": slot_minutes, "offset": offset},
        )

    if time_str_to_minutes(end) > time_str_to_minutes(window.end_time):
        raise BookingError(ErrorKind.OUTSIDE_WINDOW)

    if AppointmentStore(db).has_slot_conflict(data.type_code, date_str, start, end):
        raise BookingError(ErrorKind.SLOT_TAKEN)

    return start, end


def _validate_shipping(data: AppointmentCreate) -> None:
    required = {
        "product": data.product,
        "shipping_address": data.shipping_address,
        "shipping_city": data.shipping_city,
        "shipping_carrier": data.shipping_carrier,
    }
    missing = [name for name, value in required.items() if not (value or "").strip()]
    if missing:
        raise BookingError(ErrorKind.MISSING_FIELDS, {"fields": missing})


def _enforce_limits(
    db: Session,
    data: AppointmentCreate,
    identity: Identity,
    config: BookingConfig,
) -> None:
    store = AppointmentStore(db)
    date_str = data.date.isoformat()

    same_day = store.count_for_identity(
        email=identity.email,
        phone=identity.phone,
        id_number=identity.id_number,
        type_code=data.type_code,
        date_from=date_str,
        date_to=date_str,
    )
    if same_day:
        raise BookingError(ErrorKind.USER_LIMIT_REACHED, {"scope": "DAY"})

    if data.type_code != "SHIPPING":
        return

    week_start, week_end = week_bounds(data.date)
    this_week = store.count_for_identity(
        email=identity.email,
        phone=identity.phone,
        id_number=identity.id_number,
        type_code="SHIPPING",
        date_from=week_start.isoformat(),
        date_to=week_end.isoformat(),
    )
    if this_week >= config.shipping_limit_per_week:
        raise BookingError(
            ErrorKind.USER_LIMIT_REACHED,
            {"scope": "WEEK", "limit": config.shipping_limit_per_week},
        )


def _queue_confirmation(
    appt: Appointments,
    notifier: Notifier | None,
    admin_recipients: Iterable[str],
) -> None:
    """Queue customer + admin messages. Never fails the booking."""
    if notifier is None:
        return
    try:
        admin_message = render_admin_new_appointment(appt)
        notifier.notify_many(
            [("booking_confirmed", appt.customer_email, render_confirmation(appt))]
            + [("booking_admin_copy", recipient, admin_message) for recipient in admin_recipients],
            appointment_id=appt.id,
        )
    except Exception:
        logger.exception(f"Confirmation for appointment={appt.id} not queued")


# ── Status changes ───────────────────────────────────────────────────────


def change_status(db: Session, appointment_id: int, new_status: str) -> Appointments:
    """Apply an administrative status change if the transition is allowed."""
    with _storage_guard(db, "change_status"):
        store = AppointmentStore(db)
        appt = store.get(appointment_id)
        if appt is None:
            raise BookingError(ErrorKind.NOT_FOUND)

        _check_transition(appt, new_status)

        old_status = appt.status
        appt.status = new_status
        store.save(appt)

    logger.info(f"Appointment {appointment_id} status {old_status} → {new_status}")
    return appt


def mark_shipped(
    db: Session,
    appointment_id: int,
    tracking_number: Optional[str] = None,
    shipping_cost: Optional[float] = None,
    trip_link: Optional[str] = None,
    config: BookingConfig | None = None,
    notifier: Notifier | None = None,
    admin_recipients: Iterable[str] = (),
) -> Appointments:
    """
    Mark a SHIPPING appointment as SHIPPED.

    PICAP rides are tracked by a trip link; every other carrier needs a
    tracking number.
    """
    config = config or get_booking_config()
    tracking_number = (tracking_number or "").strip()
    trip_link = (trip_link or "").strip()

    with _storage_guard(db, "mark_shipped"):
        store = AppointmentStore(db)
        appt = store.get(appointment_id)
        if appt is None:
            raise BookingError(ErrorKind.NOT_FOUND)
        if appt.type_code != "SHIPPING":
            raise BookingError(ErrorKind.NOT_SHIPPING_APPOINTMENT)

        _check_transition(appt, "SHIPPED")

        if (appt.shipping_carrier or "").upper() == "PICAP":
            if not trip_link:
                raise BookingError(ErrorKind.MISSING_TRIP_LINK)
            appt.tracking_number = None
            appt.shipping_trip_link = trip_link
        else:
            if not tracking_number:
                raise BookingError(ErrorKind.MISSING_TRACKING)
            appt.tracking_number = tracking_number

        if shipping_cost is not None:
            appt.shipping_cost = shipping_cost
        appt.status = "SHIPPED"
        appt.shipped_at = config.now().isoformat(sep=" ", timespec="seconds")
        store.save(appt)

    logger.info(f"Appointment {appointment_id} shipped via {appt.shipping_carrier}")

    if notifier is not None:
        try:
            message = render_shipped(appt)
            copy = RenderedMessage(subject=f"Copy: {message.subject}", text=message.text)
            notifier.notify_many(
                [("booking_shipped", appt.customer_email, message)]
                + [("booking_shipped_admin_copy", recipient, copy) for recipient in admin_recipients],
                appointment_id=appt.id,
            )
        except Exception:
            logger.exception(f"Shipped notice for appointment={appt.id} not queued")

    return appt


def _check_transition(appt: Appointments, new_status: str) -> None:
    allowed = TRANSITIONS.get(appt.status, set())
    if new_status not in allowed:
        raise BookingError(
            ErrorKind.INVALID_TRANSITION,
            {"from": appt.status, "to": new_status},
        )
    if new_status == "SHIPPED" and appt.type_code != "SHIPPING":
        raise BookingError(ErrorKind.NOT_SHIPPING_APPOINTMENT)


# ── Shipping options ─────────────────────────────────────────────────────


def shipping_options(city: Optional[str]) -> list[str]:
    """Carriers serving a city. Bogotá adds same-day PICAP rides."""
    raw = (city or "").strip()
    norm = "".join(
        ch for ch in unicodedata.normalize("NFD", raw)
        if not unicodedata.combining(ch)
    ).lower()

    if "bogota" in norm:
        return ["PICAP", "INTERRAPIDISIMO"]
    return ["INTERRAPIDISIMO"]
