"""
Lifecycle notifications over Redis pub/sub.

NOTIFICATION MODEL
==================

What we publish:
  - One JSON message per lifecycle transition on NOTIFICATION_CHANNEL
  - Events: booking.created, booking.status_changed, booking.cancelled
  - Payload carries the booking reference, new status and contact address;
    the mailer service subscribes and renders the emails

When:
  - Only after the reservation change is committed. A reservation is valid
    the moment it is stored, whether or not anybody hears about it
  - dispatch() builds the payload immediately and publishes from a background
    task, so a slow or dead broker never holds up the booking response

Failure handling:
  - Redis disabled or unreachable: the event is logged as skipped
  - After a failed connect, no reconnect is tried for REDIS_RECONNECT_BACKOFF
    seconds; events in that window are skipped without touching the network
  - Publish errors are logged and counted, never raised to the caller
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_notification
from app.models.reservation import Reservation

logger = get_logger(__name__)
settings = get_settings()

EVENT_CREATED = "booking.created"
EVENT_STATUS_CHANGED = "booking.status_changed"
EVENT_CANCELLED = "booking.cancelled"

_redis_client: Optional[redis.Redis] = None
_reconnect_at: float = 0.0
_pending: set = set()


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client, _reconnect_at

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        if time.monotonic() < _reconnect_at:
            return None
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            _reconnect_at = time.monotonic() + settings.REDIS_RECONNECT_BACKOFF
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def build_event(event: str, reservation: Reservation, **extra) -> dict:
    return {
        "event": event,
        "booking_reference": reservation.booking_reference,
        "slug": reservation.slug,
        "status": reservation.status,
        "payment_status": reservation.payment_status,
        "contact_email": reservation.contact_email,
        "travel_date": reservation.travel_date.isoformat(),
        "seat_numbers": list(reservation.seat_numbers),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        **extra,
    }


def _build_or_log(event: str, reservation: Reservation, **extra) -> Optional[dict]:
    try:
        return build_event(event, reservation, **extra)
    except Exception as e:
        record_notification("failed")
        logger.error("notification_failed", notification_event=event, error=str(e))
        return None


async def publish(event: str, payload: dict) -> bool:
    """Send a built payload. Returns True if it reached Redis."""
    client = await get_redis()
    if not client:
        record_notification("skipped")
        logger.info(
            "notification_skipped",
            notification_event=event,
            booking_reference=payload["booking_reference"],
        )
        return False

    try:
        receivers = await client.publish(settings.NOTIFICATION_CHANNEL, json.dumps(payload))
    except Exception as e:
        record_notification("failed")
        logger.error(
            "notification_failed",
            notification_event=event,
            booking_reference=payload["booking_reference"],
            error=str(e),
        )
        return False

    record_notification("published")
    logger.info(
        "notification_published",
        notification_event=event,
        booking_reference=payload["booking_reference"],
        receivers=receivers,
    )
    return True


async def notify(event: str, reservation: Reservation, **extra) -> bool:
    """Build and publish a lifecycle event, waiting for the result."""
    payload = _build_or_log(event, reservation, **extra)
    if payload is None:
        return False
    return await publish(event, payload)


def dispatch(event: str, reservation: Reservation, **extra) -> None:
    """Build the event now and publish it in the background."""
    payload = _build_or_log(event, reservation, **extra)
    if payload is None:
        return
    task = asyncio.create_task(publish(event, payload))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def drain() -> None:
    """Wait for in-flight publishes, e.g. before shutdown."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


async def get_broker_status() -> dict:
    """Redis status for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled" if not settings.REDIS_ENABLED else "unavailable"}

    try:
        await client.ping()
        info = await client.info("clients")
        return {
            "status": "connected",
            "channel": settings.NOTIFICATION_CHANNEL,
            "connected_clients": info.get("connected_clients", 0),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
