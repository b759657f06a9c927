"""
backend/app/services/events.py

Event emitter: pushes notification events to a Redis queue consumed by the
email/SMS delivery worker (external).

Queue: settings.events_queue (default events:p2p)
"""

import json
import time
import logging

from ..config import settings
from ..redis_client import redis_client

logger = logging.getLogger(__name__)


def emit_event(event_type: str, payload: dict) -> None:
    """
    Emit a notification event.

    Delivery problems are logged and never propagate to the booking
    operation that triggered the event.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    if redis_client is None:
        logger.info(f"Event {event_type} (no queue configured): {payload}")
        return
    try:
        redis_client.rpush(settings.events_queue, json.dumps(event, default=str))
        logger.info(f"Event emitted: {event_type} → {settings.events_queue}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")


def booking_payload(booking, **extra) -> dict:
    """Common fields for booking notifications."""
    return {
        "booking_id": booking.id,
        "client_id": booking.client_id,
        "therapist_id": booking.therapist_id,
        "service_id": booking.service_id,
        "date_start": booking.date_start,
        "status": booking.status,
        **extra,
    }
