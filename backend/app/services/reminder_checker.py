"""
Booking reminder checker.

Periodically checks for upcoming bookings and emits booking_reminder events
to notify clients before their appointment.

Window: settings.reminder_before_hours before date_start.
A reminder is sent once per booking (bookings.reminder_sent).

Runs as an asyncio task in backend lifespan.
Uses synchronous DB (via asyncio.to_thread).
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..models.enums import BookingStatus
from ..models.generated import Bookings
from .events import booking_payload, emit_event
from .slots.config import format_db_datetime, parse_db_datetime

logger = logging.getLogger(__name__)

CHECK_INTERVAL = 60  # seconds between checks


async def reminder_checker_loop() -> None:
    """
    Periodic loop that checks for bookings needing a reminder.

    For each pending/confirmed booking where
    date_start - reminder_before_hours <= now < date_start
    and no reminder was sent yet:
    - Emit booking_reminder event
    - Set reminder_sent
    """
    logger.info("reminder_checker_loop started")

    try:
        while True:
            try:
                await asyncio.to_thread(check_upcoming_bookings)
            except asyncio.CancelledError:
                logger.info("reminder_checker_loop cancelled")
                raise
            except Exception:
                logger.exception("reminder_checker_loop error")

            await asyncio.sleep(CHECK_INTERVAL)
    except asyncio.CancelledError:
        pass


def check_upcoming_bookings(
    now: datetime | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> list[int]:
    """Send due reminders (synchronous). Returns the reminded booking ids."""
    now = now or datetime.now()
    window_end = now + timedelta(hours=settings.reminder_before_hours)

    reminded = []
    db = session_factory()
    try:
        bookings = (
            db.query(Bookings)
            .filter(
                Bookings.status.in_([BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]),
                Bookings.reminder_sent == 0,
                Bookings.date_start > format_db_datetime(now),
                Bookings.date_start <= format_db_datetime(window_end),
            )
            .order_by(Bookings.date_start)
            .all()
        )

        for booking in bookings:
            try:
                _remind(db, booking)
                reminded.append(booking.id)
            except Exception:
                db.rollback()
                logger.exception(
                    f"Error processing booking {booking.id} for reminder"
                )
    finally:
        db.close()

    return reminded


def _remind(db: Session, booking: Bookings) -> None:
    """Mark the booking reminded, then emit the event."""
    booking.reminder_sent = 1
    db.commit()

    emit_event("booking_reminder", booking_payload(booking))

    date_start = parse_db_datetime(booking.date_start)
    logger.info(
        f"booking_reminder emitted for booking={booking.id} "
        f"(starts at {date_start.strftime('%Y-%m-%d %H:%M')})"
    )
