from fastapi import Request

from .services.events import Notifier
from .services.slots.config import BookingConfig


def get_config(request: Request) -> BookingConfig:
    return request.app.state.config


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_admin_recipients(request: Request) -> list[str]:
    return request.app.state.settings.admin_recipients
