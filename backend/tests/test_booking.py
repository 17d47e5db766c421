from datetime import date, timedelta

import pytest
from conftest import DAY, RecordingNotifier
from sqlalchemy.exc import IntegrityError, OperationalError

from appointments.errors import BookingError, ErrorKind, SlotConflictError
from appointments.models import Appointments
from appointments.repositories import AppointmentStore, WindowRepository
from appointments.schemas.appointments import AppointmentCreate
from appointments.services import booking


def request(**overrides) -> AppointmentCreate:
    data = {
        "type_code": "TRYOUT",
        "date": DAY.isoformat(),
        "start_time": "09:00",
        "product": "Trail shoes",
        "customer_name": "Ana Gómez",
        "customer_email": "  Ana@Example.com ",
        "customer_phone": "+57 300 123 4567",
    }
    data.update(overrides)
    return AppointmentCreate(**data)


def shipping_request(day: date, **overrides) -> AppointmentCreate:
    data = {
        "type_code": "SHIPPING",
        "date": day.isoformat(),
        "product": "Trail shoes",
        "customer_name": "Ana Gómez",
        "customer_email": "ana@example.com",
        "customer_phone": "3001234567",
        "shipping_address": "Cra 7 # 12-34",
        "shipping_city": "Bogotá",
        "shipping_carrier": "INTERRAPIDISIMO",
    }
    data.update(overrides)
    return AppointmentCreate(**data)


def expect_error(kind: ErrorKind, fn, *args, **kwargs) -> BookingError:
    with pytest.raises(BookingError) as exc_info:
        fn(*args, **kwargs)
    assert exc_info.value.kind is kind
    return exc_info.value


# ── Timed appointments ───────────────────────────────────────────────────


def test_create_computes_end_and_normalizes_identity(db, config, add_window):
    add_window("09:00", "10:00", 20)

    appt_id = booking.create_appointment(db, request(customer_id_number="1.020.304"), config)

    appt = db.get(Appointments, appt_id)
    assert (appt.start_time, appt.end_time) == ("09:00", "09:20")
    assert appt.status == "CONFIRMED"
    assert appt.customer_email == "ana@example.com"
    assert appt.customer_phone == "573001234567"
    assert appt.customer_id_number == "1020304"
    assert appt.delivery_method == "IN_PERSON"


def test_missing_fields(db, config):
    err = expect_error(
        ErrorKind.MISSING_FIELDS,
        booking.create_appointment, db, request(customer_name=" ", customer_phone=None), config,
    )
    assert err.meta == {"fields": ["customer_name", "customer_phone"]}


def test_invalid_contact_fields(db, config):
    expect_error(ErrorKind.INVALID_EMAIL, booking.create_appointment, db, request(customer_email="ana@"), config)
    expect_error(ErrorKind.INVALID_PHONE, booking.create_appointment, db, request(customer_phone="call me"), config)
    expect_error(ErrorKind.INVALID_ID, booking.create_appointment, db, request(customer_id_number="abc"), config)


def test_missing_slot(db, config):
    expect_error(ErrorKind.MISSING_SLOT, booking.create_appointment, db, request(start_time=None), config)


def test_outside_any_window(db, config, add_window):
    add_window("09:00", "10:00", 15)

    expect_error(ErrorKind.OUTSIDE_WINDOW, booking.create_appointment, db, request(start_time="10:00"), config)
    expect_error(ErrorKind.OUTSIDE_WINDOW, booking.create_appointment, db, request(start_time="08:45"), config)


def test_wrong_span(db, config, add_window):
    add_window("09:00", "10:00", 15)

    err = expect_error(
        ErrorKind.INVALID_SLOT_SIZE,
        booking.create_appointment, db, request(start_time="09:00", end_time="09:30"), config,
    )
    assert err.meta == {"expected": 15, "got": 30}


def test_start_off_the_slot_grid(db, config, add_window):
    add_window("09:00", "10:00", 15)

    err = expect_error(
        ErrorKind.INVALID_SLOT_SIZE, booking.create_appointment, db, request(start_time="09:05"), config,
    )
    assert err.meta == {"expected": 15, "offset": 5}


def test_trailing_partial_block_not_bookable(db, config, add_window):
    add_window("08:00", "08:47", 15)

    expect_error(ErrorKind.OUTSIDE_WINDOW, booking.create_appointment, db, request(start_time="08:45"), config)


def test_slot_taken(db, config, add_window, add_appointment):
    add_window("09:00", "10:00", 15)
    add_appointment("09:00", "09:15", customer_email="other@example.com", customer_phone="3110000000")

    expect_error(ErrorKind.SLOT_TAKEN, booking.create_appointment, db, request(), config)


def test_cancelled_slot_can_be_rebooked(db, config, add_window, add_appointment):
    add_window("09:00", "10:00", 15)
    add_appointment(
        "09:00", "09:15", status="CANCELLED",
        customer_email="other@example.com", customer_phone="3110000000",
    )

    assert booking.create_appointment(db, request(), config)


def test_insert_race_reports_slot_taken(db, config, add_window, add_appointment, monkeypatch):
    add_window("09:00", "10:00", 15)
    # The competing request committed between our pre-check and our insert
    monkeypatch.setattr(AppointmentStore, "has_slot_conflict", lambda self, *args: False)
    add_appointment("09:00", "09:15", customer_email="other@example.com", customer_phone="3110000000")

    expect_error(ErrorKind.SLOT_TAKEN, booking.create_appointment, db, request(), config)

    assert db.query(Appointments).count() == 1


def test_other_integrity_failure_is_server_error(db, config, add_window, monkeypatch):
    add_window("09:00", "10:00", 15)
    original_insert = AppointmentStore.insert

    def insert_with_unknown_status(self, appointment):
        appointment.status = "PENDING"
        return original_insert(self, appointment)

    monkeypatch.setattr(AppointmentStore, "insert", insert_with_unknown_status)

    expect_error(ErrorKind.SERVER_ERROR, booking.create_appointment, db, request(), config)

    assert db.query(Appointments).count() == 0


def test_storage_error_is_server_error(db, config, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(WindowRepository, "find_containing", boom)

    err = expect_error(ErrorKind.SERVER_ERROR, booking.create_appointment, db, request(), config)
    assert err.retryable


# ── Anti-abuse limits ────────────────────────────────────────────────────


def test_same_email_same_day_same_type_is_limited(db, config, add_window):
    add_window("09:00", "10:00", 15)
    booking.create_appointment(db, request(), config)

    err = expect_error(
        ErrorKind.USER_LIMIT_REACHED,
        booking.create_appointment, db,
        request(start_time="09:30", customer_phone="3119999999", customer_id_number="555"),
        config,
    )
    assert err.meta == {"scope": "DAY"}


def test_id_number_alone_identifies_customer(db, config, add_window):
    add_window("09:00", "10:00", 15)
    booking.create_appointment(db, request(customer_id_number="1020304"), config)

    expect_error(
        ErrorKind.USER_LIMIT_REACHED,
        booking.create_appointment, db,
        request(
            start_time="09:15",
            customer_email="someone@else.com",
            customer_phone="3119999999",
            customer_id_number="1.020.304",
        ),
        config,
    )


def test_limit_is_per_type_and_date(db, config, add_window):
    add_window("09:00", "10:00", 15)
    add_window("09:00", "10:00", 15, type_code="PICKUP")
    add_window("09:00", "10:00", 15, day=date(2030, 3, 14))
    booking.create_appointment(db, request(), config)

    assert booking.create_appointment(db, request(type_code="PICKUP"), config)
    assert booking.create_appointment(db, request(date="2030-03-14"), config)


def test_cancelled_booking_does_not_count(db, config, add_window, add_appointment):
    add_window("09:00", "10:00", 15)
    add_appointment("09:30", "09:45", status="CANCELLED", customer_email="ana@example.com")

    assert booking.create_appointment(db, request(), config)


# ── Shipping ─────────────────────────────────────────────────────────────


def test_shipping_has_no_slot(db, config):
    appt_id = booking.create_appointment(db, shipping_request(DAY, start_time="09:00"), config)

    appt = db.get(Appointments, appt_id)
    assert appt.start_time is None and appt.end_time is None
    assert appt.delivery_method == "SHIPPING"


def test_shipping_requires_product_and_address(db, config):
    err = expect_error(
        ErrorKind.MISSING_FIELDS,
        booking.create_appointment, db, shipping_request(DAY, product=None, shipping_carrier=""), config,
    )
    assert err.meta == {"fields": ["product", "shipping_carrier"]}


def test_weekly_shipping_cap(db, config):
    # Week of 2030-03-13 runs Sunday 10th to Saturday 16th
    for day in (10, 11, 12):
        booking.create_appointment(db, shipping_request(date(2030, 3, day)), config)

    err = expect_error(
        ErrorKind.USER_LIMIT_REACHED,
        booking.create_appointment, db, shipping_request(date(2030, 3, 16)), config,
    )
    assert err.meta == {"scope": "WEEK", "limit": 3}

    assert booking.create_appointment(db, shipping_request(date(2030, 3, 17)), config)


# ── Notifications ────────────────────────────────────────────────────────


def test_confirmation_queued_for_customer_and_admins(db, config, add_window, notifier):
    add_window("09:00", "10:00", 15)

    appt_id = booking.create_appointment(
        db, request(), config, notifier=notifier, admin_recipients=["ops@example.com"],
    )

    assert [(m["type"], m["recipient"]) for m in notifier.sent] == [
        ("booking_confirmed", "ana@example.com"),
        ("booking_admin_copy", "ops@example.com"),
    ]
    assert all(m["appointment_id"] == appt_id for m in notifier.sent)
    assert "09:00–09:15" in notifier.sent[0]["text"]


def test_notification_failure_does_not_fail_booking(db, config, add_window):
    add_window("09:00", "10:00", 15)

    appt_id = booking.create_appointment(db, request(), config, notifier=RecordingNotifier(fail=True))

    assert db.get(Appointments, appt_id).status == "CONFIRMED"


# ── Status changes ───────────────────────────────────────────────────────


def test_cancel_then_no_further_transitions(db, add_appointment):
    appt = add_appointment("09:00", "09:15")

    assert booking.change_status(db, appt.id, "CANCELLED").status == "CANCELLED"

    err = expect_error(ErrorKind.INVALID_TRANSITION, booking.change_status, db, appt.id, "CONFIRMED")
    assert err.meta == {"from": "CANCELLED", "to": "CONFIRMED"}


def test_change_status_unknown_appointment(db):
    expect_error(ErrorKind.NOT_FOUND, booking.change_status, db, 999, "DONE")


def test_only_shipping_can_be_shipped(db, add_appointment):
    appt = add_appointment("09:00", "09:15")

    expect_error(ErrorKind.NOT_SHIPPING_APPOINTMENT, booking.change_status, db, appt.id, "SHIPPED")


def test_mark_shipped_with_tracking(db, config, add_appointment, notifier):
    appt = add_appointment(type_code="SHIPPING", shipping_carrier="INTERRAPIDISIMO")

    expect_error(ErrorKind.MISSING_TRACKING, booking.mark_shipped, db, appt.id, config=config)

    shipped = booking.mark_shipped(
        db, appt.id, tracking_number="700012345", shipping_cost=12000,
        config=config, notifier=notifier,
    )
    assert shipped.status == "SHIPPED"
    assert shipped.tracking_number == "700012345"
    assert shipped.shipped_at is not None
    assert notifier.sent[0]["type"] == "booking_shipped"

    assert booking.change_status(db, appt.id, "DONE").status == "DONE"


def test_mark_shipped_picap_needs_trip_link(db, config, add_appointment):
    appt = add_appointment(type_code="SHIPPING", shipping_carrier="picap")

    expect_error(ErrorKind.MISSING_TRIP_LINK, booking.mark_shipped, db, appt.id, tracking_number="x", config=config)

    shipped = booking.mark_shipped(db, appt.id, trip_link="https://picap.app/t/1", config=config)
    assert shipped.tracking_number is None
    assert shipped.shipping_trip_link == "https://picap.app/t/1"


@pytest.mark.parametrize("city,expected", [
    ("Bogotá D.C.", ["PICAP", "INTERRAPIDISIMO"]),
    ("  BOGOTA ", ["PICAP", "INTERRAPIDISIMO"]),
    ("Medellín", ["INTERRAPIDISIMO"]),
    (None, ["INTERRAPIDISIMO"]),
])
def test_shipping_options(city, expected):
    assert booking.shipping_options(city) == expected


# ── Store ────────────────────────────────────────────────────────────────


def test_store_maps_only_the_slot_index_to_conflict(db, add_appointment):
    add_appointment("09:00", "09:15")
    store = AppointmentStore(db)

    with pytest.raises(SlotConflictError):
        store.insert(Appointments(
            type_code="TRYOUT", date=DAY.isoformat(), start_time="09:00", end_time="09:15",
            customer_name="Bo", customer_email="bo@example.com", customer_phone="3110000000",
        ))

    with pytest.raises(IntegrityError):
        store.insert(Appointments(
            type_code="SHIPPING", date=DAY.isoformat(),
            customer_email="bo@example.com", customer_phone="3110000000",
        ))

    assert db.query(Appointments).count() == 1


def test_list_for_date_returns_every_status_timed_first(db, add_appointment):
    shipping = add_appointment(type_code="SHIPPING", customer_email="s@example.com")
    late = add_appointment("10:00", "10:15", status="CANCELLED")
    early = add_appointment("09:00", "09:15", type_code="PICKUP")
    add_appointment("09:00", "09:15", day=DAY + timedelta(days=1))

    listed = AppointmentStore(db).list_for_date(DAY.isoformat())

    assert [a.id for a in listed] == [early.id, late.id, shipping.id]
