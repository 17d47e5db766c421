from datetime import date, datetime

import pytest

from appointments.database import Database
from appointments.models import Appointments, AvailabilityWindows
from appointments.services.slots.config import BookingConfig

DAY = date(2030, 3, 13)  # Wednesday
BEFORE_DAY = datetime(2030, 3, 1, 9, 0)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.fail = fail

    def notify(self, event_type, recipient, message, appointment_id=None):
        if self.fail:
            raise RuntimeError("outbox unavailable")
        self.sent.append({
            "type": event_type,
            "recipient": recipient,
            "subject": message.subject,
            "text": message.text,
            "appointment_id": appointment_id,
        })
        return True

    def notify_many(self, items, appointment_id=None):
        for event_type, recipient, message in items:
            self.notify(event_type, recipient, message, appointment_id)
        return True


@pytest.fixture
def database(tmp_path):
    handle = Database(f"sqlite:///{tmp_path / 'test.db'}").open()
    yield handle
    handle.close()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def config():
    return BookingConfig(shipping_limit_per_week=3, timezone="America/Bogota")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def add_window(db):
    def _add(start, end, slot_minutes=15, type_code="TRYOUT", day=DAY):
        window = AvailabilityWindows(
            date=day.isoformat(),
            type_code=type_code,
            start_time=start,
            end_time=end,
            slot_minutes=slot_minutes,
        )
        db.add(window)
        db.commit()
        return window
    return _add


@pytest.fixture
def add_appointment(db):
    def _add(start=None, end=None, type_code="TRYOUT", day=DAY, status="CONFIRMED", **fields):
        values = {
            "customer_name": "Ana",
            "customer_email": "ana@example.com",
            "customer_phone": "3001234567",
        }
        values.update(fields)
        appt = Appointments(
            type_code=type_code,
            date=day.isoformat(),
            start_time=start,
            end_time=end,
            status=status,
            **values,
        )
        db.add(appt)
        db.commit()
        return appt
    return _add
