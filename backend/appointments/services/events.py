"""
backend/appointments/services/events.py

Notification outbox: pushes rendered notifications to a Redis list.

The consumer loop (services/consumer.py) pops and delivers them, so a
booking request or reminder tick never waits on the delivery transport.
"""

import json
import time
import logging
from typing import Iterable

from redis import Redis

from .notifications import RenderedMessage

logger = logging.getLogger(__name__)

NOTIFY_QUEUE = "events:notify"


def emit_events(redis: Redis, events: list[dict], queue: str = NOTIFY_QUEUE) -> bool:
    """
    Push events onto the outbox list in a single RPUSH.

    Never raises: a failed push is logged and reported as False.
    """
    if not events:
        return True

    ts = int(time.time())
    encoded = [json.dumps({**event, "ts": ts}) for event in events]
    types = ", ".join(event["type"] for event in events)
    try:
        redis.rpush(queue, *encoded)
        logger.info(f"Events emitted: {types} → {queue}")
        return True
    except Exception as e:
        logger.error(f"Failed to emit events {types}: {e}")
        return False


class Notifier:
    """Queues rendered messages for asynchronous delivery."""

    def __init__(self, redis: Redis, queue: str = NOTIFY_QUEUE):
        self.redis = redis
        self.queue = queue

    def notify(
        self,
        event_type: str,
        recipient: str,
        message: RenderedMessage,
        appointment_id: int | None = None,
    ) -> bool:
        return self.notify_many([(event_type, recipient, message)], appointment_id)

    def notify_many(
        self,
        items: Iterable[tuple[str, str, RenderedMessage]],
        appointment_id: int | None = None,
    ) -> bool:
        """Queue several (event_type, recipient, message) items in one round trip."""
        events = []
        for event_type, recipient, message in items:
            event = {
                "type": event_type,
                "recipient": recipient,
                "subject": message.subject,
                "text": message.text,
            }
            if appointment_id is not None:
                event["appointment_id"] = appointment_id
            events.append(event)
        return emit_events(self.redis, events, self.queue)
