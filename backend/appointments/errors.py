"""
Booking error taxonomy.

Services raise BookingError; the HTTP layer maps kind → status code.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    MISSING_FIELDS = "MISSING_FIELDS"
    MISSING_SLOT = "MISSING_SLOT"
    MISSING_DATE = "MISSING_DATE"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_PHONE = "INVALID_PHONE"
    INVALID_ID = "INVALID_ID"
    OUTSIDE_WINDOW = "OUTSIDE_WINDOW"
    INVALID_SLOT_SIZE = "INVALID_SLOT_SIZE"
    SLOT_TAKEN = "SLOT_TAKEN"
    USER_LIMIT_REACHED = "USER_LIMIT_REACHED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_SHIPPING_APPOINTMENT = "NOT_SHIPPING_APPOINTMENT"
    MISSING_TRACKING = "MISSING_TRACKING"
    MISSING_TRIP_LINK = "MISSING_TRIP_LINK"
    SERVER_ERROR = "SERVER_ERROR"


HTTP_STATUS = {
    ErrorKind.SLOT_TAKEN: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.USER_LIMIT_REACHED: 429,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVER_ERROR: 500,
}


class BookingError(Exception):
    """A booking rule was violated (or storage failed, for SERVER_ERROR)."""

    def __init__(self, kind: ErrorKind, meta: Optional[dict[str, Any]] = None):
        super().__init__(kind.value)
        self.kind = kind
        self.meta = meta

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.kind, 400)

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.SERVER_ERROR

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"ok": False, "error": self.kind.value}
        if self.meta:
            body["meta"] = self.meta
        return body


class SlotConflictError(Exception):
    """The store rejected an insert for an already booked slot."""
