"""
Notification rendering and delivery.

Rendering is plain text per event type. Delivery goes through a
NotificationGateway; the core only ever sees success or a logged failure.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

TYPE_LABELS = {
    "TRYOUT": "Try-out",
    "PICKUP": "Pickup",
    "SHIPPING": "Shipping",
}


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str


# ── Rendering ────────────────────────────────────────────────────────────


def _format_date(value: str) -> str:
    """'2026-01-28' → '28.01.2026'."""
    try:
        return date.fromisoformat(value).strftime("%d.%m.%Y")
    except (TypeError, ValueError):
        return str(value)


def _slot_line(appt) -> str:
    if appt.start_time and appt.end_time:
        return f"🕒 {_format_date(appt.date)} {appt.start_time}–{appt.end_time}"
    return f"📅 {_format_date(appt.date)}"


def _shipping_lines(appt) -> list[str]:
    lines = [f"📦 {appt.shipping_address}, {appt.shipping_city}"]
    if appt.shipping_neighborhood:
        lines.append(f"   {appt.shipping_neighborhood}")
    lines.append(f"🚚 {appt.shipping_carrier}")
    return lines


def render_confirmation(appt) -> RenderedMessage:
    label = TYPE_LABELS.get(appt.type_code, appt.type_code)
    is_shipping = appt.type_code == "SHIPPING"
    subject = (
        "Shipping request confirmed" if is_shipping
        else f"{label} appointment confirmed"
    )

    lines = [f"Hi {appt.customer_name},", "", f"{subject} (#{appt.id}).", _slot_line(appt)]
    if appt.product:
        lines.append(f"🛍 {appt.product}")
    if is_shipping:
        lines.extend(_shipping_lines(appt))
    if appt.notes:
        lines.append(f"📝 {appt.notes}")

    return RenderedMessage(subject=subject, text="\n".join(lines))


def render_admin_new_appointment(appt) -> RenderedMessage:
    label = TYPE_LABELS.get(appt.type_code, appt.type_code)
    subject = f"New {label.lower()} #{appt.id}"

    lines = [
        subject,
        _slot_line(appt),
        f"👤 {appt.customer_name} · {appt.customer_email} · {appt.customer_phone}",
    ]
    if appt.customer_id_number:
        lines.append(f"🪪 {appt.customer_id_number}")
    if appt.product:
        lines.append(f"🛍 {appt.product}")
    if appt.type_code == "SHIPPING":
        lines.extend(_shipping_lines(appt))
    if appt.notes:
        lines.append(f"📝 {appt.notes}")

    return RenderedMessage(subject=subject, text="\n".join(lines))


def render_reminder(appt, lead_minutes: int) -> RenderedMessage:
    label = TYPE_LABELS.get(appt.type_code, appt.type_code)
    subject = f"Reminder: your {label.lower()} today at {appt.start_time}"

    lines = [
        f"Hi {appt.customer_name},",
        "",
        f"Your appointment starts in {lead_minutes} minutes.",
        _slot_line(appt),
    ]
    if appt.product:
        lines.append(f"🛍 {appt.product}")

    return RenderedMessage(subject=subject, text="\n".join(lines))


def render_shipped(appt) -> RenderedMessage:
    subject = f"Your order #{appt.id} has been shipped"

    lines = [f"Hi {appt.customer_name},", "", subject + ".", f"🚚 {appt.shipping_carrier}"]
    if appt.tracking_number:
        lines.append(f"Tracking number: {appt.tracking_number}")
    if appt.shipping_trip_link:
        lines.append(f"Follow the ride: {appt.shipping_trip_link}")
    if appt.shipping_cost is not None:
        lines.append(f"Shipping cost: {appt.shipping_cost:.0f}")

    return RenderedMessage(subject=subject, text="\n".join(lines))


# ── Delivery ─────────────────────────────────────────────────────────────


class NotificationGateway(Protocol):
    async def send(self, recipient: str, message: RenderedMessage) -> None:
        """Deliver one message. Raise on failure."""


class WebhookNotificationGateway:
    """Posts each message as JSON to a mail/SMS relay endpoint."""

    def __init__(self, url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, recipient: str, message: RenderedMessage) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.url, json={
                "to": recipient,
                "subject": message.subject,
                "text": message.text,
            })
            resp.raise_for_status()


class LogNotificationGateway:
    """Fallback when no relay is configured: messages only reach the log."""

    async def send(self, recipient: str, message: RenderedMessage) -> None:
        logger.info(f"Notification to {recipient}: {message.subject}")
