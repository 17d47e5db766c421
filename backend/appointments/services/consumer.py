"""
Notification outbox consumer.

Pops events pushed by services/events.py and hands them to the
NotificationGateway. Started as an asyncio task in the app lifespan.
"""

import asyncio
import json
import logging

import redis.asyncio as aioredis

from .events import NOTIFY_QUEUE
from .notifications import NotificationGateway, RenderedMessage

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_QUEUE = f"{NOTIFY_QUEUE}:retry"
DEAD_QUEUE = f"{NOTIFY_QUEUE}:dead"


async def notification_consumer_loop(redis_url: str, gateway: NotificationGateway) -> None:
    """
    Consume events from the outbox and its retry list.

    Uses BRPOP with 5s timeout to avoid busy-waiting.
    On failure, retries up to MAX_RETRIES, then moves to dead-letter queue.
    """
    r = aioredis.from_url(redis_url, decode_responses=True)
    logger.info("notification_consumer_loop started")

    try:
        while True:
            try:
                result = await r.brpop([NOTIFY_QUEUE, RETRY_QUEUE], timeout=5)
                if result is None:
                    continue

                _, raw = result
                await process_event_safe(r, raw, gateway)

            except asyncio.CancelledError:
                logger.info("notification_consumer_loop cancelled")
                raise
            except Exception:
                logger.exception("notification_consumer_loop error, retrying in 2s")
                await asyncio.sleep(2)
    finally:
        await r.aclose()


async def process_event_safe(r, raw: str, gateway: NotificationGateway) -> bool:
    """
    Parse and deliver a single event with retry logic.

    On failure:
    - If attempts < MAX_RETRIES → push to retry queue
    - Otherwise → push to dead-letter queue
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.error(f"Invalid JSON in event queue: {raw[:200]}")
        await r.rpush(DEAD_QUEUE, raw)
        return False

    attempt = data.get("_attempt", 1)

    try:
        message = RenderedMessage(subject=data["subject"], text=data["text"])
        await gateway.send(data["recipient"], message)
        return True
    except Exception:
        logger.exception(
            f"Failed to deliver event type={data.get('type')} "
            f"(attempt {attempt}/{MAX_RETRIES})"
        )

        if attempt < MAX_RETRIES:
            data["_attempt"] = attempt + 1
            await r.lpush(RETRY_QUEUE, json.dumps(data))
        else:
            await r.rpush(DEAD_QUEUE, json.dumps(data))
        return False
