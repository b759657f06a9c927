# backend/app/services/slots/availability.py
"""
Level 2: Conflict checking and the per-therapist slot query.

Takes into account:
- Slots from Level 1 (working window + breaks)
- Advance-notice and booking-horizon policy (every slot)
- Existing non-cancelled bookings of the therapist
- Existing non-cancelled bookings of the requesting client (any therapist)

check_conflicts() is pure: bookings, service durations and policy come in
as arguments. calculate_therapist_availability() gathers them from the DB.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...errors import NotFoundError
from ...models.enums import ACTIVE_BOOKING_STATUSES
from .calculator import Slot, generate_slots, overlaps
from .config import (
    BookingConfig,
    format_db_datetime,
    get_booking_config,
    parse_db_datetime,
)
from .rules import AvailabilityRules, day_block_reason, resolve_working_window, rules_from_record

logger = logging.getLogger(__name__)

BOOKED_REASON = "Already booked"
CLIENT_BUSY_REASON = "Client already has a booking at this time"
NO_RULES_REASON = "Therapist has no availability configured"


@dataclass(frozen=True)
class BookedInterval:
    """An existing booking; its duration comes from its own service."""
    booking_id: int
    therapist_id: int
    service_id: int
    start: datetime


@dataclass
class DayAvailability:
    therapist_id: int
    date: date
    service_duration_min: int
    day_available: bool
    reason: str | None = None
    slots: list[Slot] = field(default_factory=list)

    def find(self, time_str: str) -> Slot | None:
        for slot in self.slots:
            if slot.time == time_str:
                return slot
        return None

    def to_dict(self) -> dict:
        return {
            "therapist_id": self.therapist_id,
            "date": self.date.isoformat(),
            "service_duration_min": self.service_duration_min,
            "day_available": self.day_available,
            "reason": self.reason,
            "slots": [slot.to_dict() for slot in self.slots],
        }


def min_notice_reason(hours: int) -> str:
    return f"Minimum advance notice: {hours}h"


def horizon_reason(days: int) -> str:
    return f"Bookable at most {days} days in advance"


def policy_reason(
    slot_start: datetime,
    rules: AvailabilityRules,
    now: datetime,
) -> str | None:
    """Advance-notice / horizon check for one slot start."""
    if slot_start < now + timedelta(hours=rules.min_advance_hours):
        return min_notice_reason(rules.min_advance_hours)
    if slot_start > now + timedelta(days=rules.max_advance_days):
        return horizon_reason(rules.max_advance_days)
    return None


def check_conflicts(
    slots: list[Slot],
    target_date: date,
    duration_min: int,
    therapist_bookings: Sequence[BookedInterval],
    client_bookings: Sequence[BookedInterval],
    durations: Mapping[int, int],
    rules: AvailabilityRules,
    now: datetime,
    config: BookingConfig | None = None,
) -> list[Slot]:
    """
    Mark slots unavailable by policy, therapist overlap and client overlap.

    The policy check runs for every slot. Overlap checks only touch slots
    that are still available. Therapist bookings are widened by the
    therapist's buffer on both sides. Mutates and returns `slots`.
    """
    config = config or get_booking_config()
    day_start = datetime.combine(target_date, datetime.min.time())
    buffer = timedelta(minutes=rules.buffer_minutes)

    def booking_end(booking: BookedInterval) -> datetime:
        minutes = durations.get(booking.service_id, config.default_service_duration)
        return booking.start + timedelta(minutes=minutes)

    for slot in slots:
        slot_start = day_start + timedelta(minutes=slot.start)
        slot_end = slot_start + timedelta(minutes=duration_min)

        reason = policy_reason(slot_start, rules, now)
        if reason and slot.available:
            slot.block(reason)

        if not slot.available:
            continue

        for booking in therapist_bookings:
            if overlaps(slot_start, slot_end, booking.start - buffer, booking_end(booking) + buffer):
                slot.block(BOOKED_REASON, occupied_by=booking.therapist_id)
                break

        if not slot.available:
            continue

        for booking in client_bookings:
            if overlaps(slot_start, slot_end, booking.start, booking_end(booking)):
                slot.block(CLIENT_BUSY_REASON)
                break

    return slots


def calculate_therapist_availability(
    db: Session,
    therapist_id: int,
    target_date: date,
    duration_min: int,
    client_id: int | None = None,
    client_email: str | None = None,
    exclude_booking_id: int | None = None,
    now: datetime | None = None,
    config: BookingConfig | None = None,
    durations: Mapping[int, int] | None = None,
) -> DayAvailability:
    """
    Bookable slots for a therapist on a date.

    The client is identified by client_id or, failing that, by email.
    exclude_booking_id leaves one booking out (used when moving it).
    """
    config = config or get_booking_config()
    now = now or datetime.now()

    therapist = _get_therapist(db, therapist_id)
    if not therapist:
        raise NotFoundError(f"Therapist {therapist_id} not found")

    result = DayAvailability(
        therapist_id=therapist_id,
        date=target_date,
        service_duration_min=duration_min,
        day_available=False,
    )

    record = _get_availability_record(db, therapist_id)
    if record is None:
        result.reason = NO_RULES_REASON
        return result

    rules = rules_from_record(record)
    blocked = day_block_reason(target_date, rules)
    if blocked:
        result.reason = blocked
        return result

    window = resolve_working_window(target_date, rules)
    if window is None:
        result.reason = NO_RULES_REASON
        return result

    # Step 1: slots with breaks (Level 1)
    slots = generate_slots(window, duration_min, config)

    # Step 2: bookings of the therapist and of the client on that date
    if client_id is None and client_email:
        client = find_client_by_email(db, client_email)
        client_id = client.id if client else None

    therapist_bookings = bookings_on_date(
        db, target_date, therapist_id=therapist_id, exclude_booking_id=exclude_booking_id
    )
    client_bookings = []
    if client_id is not None:
        client_bookings = [
            b for b in bookings_on_date(
                db, target_date, client_id=client_id, exclude_booking_id=exclude_booking_id
            )
            # same-therapist bookings are already covered above
            if b.therapist_id != therapist_id
        ]

    # Step 3: conflicts and policy
    check_conflicts(
        slots,
        target_date,
        duration_min,
        therapist_bookings,
        client_bookings,
        durations if durations is not None else service_durations(db),
        rules,
        now,
        config,
    )

    result.day_available = True
    result.slots = slots
    logger.debug(
        f"Availability therapist={therapist_id} date={target_date}: "
        f"{sum(1 for s in slots if s.available)}/{len(slots)} open"
    )
    return result


# ── Database helpers ─────────────────────────────────────────────────────


def service_durations(db: Session) -> dict[int, int]:
    """service_id → duration in minutes."""
    from ...models.generated import Services
    return {sid: duration for sid, duration in db.query(Services.id, Services.duration_min).all()}


def find_client_by_email(db: Session, email: str):
    """Case-insensitive client lookup."""
    from ...models.generated import Clients
    return (
        db.query(Clients)
        .filter(func.lower(Clients.email) == email.strip().lower())
        .first()
    )


def load_rules(db: Session, therapist_id: int) -> AvailabilityRules | None:
    record = _get_availability_record(db, therapist_id)
    return rules_from_record(record) if record is not None else None


def _get_therapist(db: Session, therapist_id: int):
    from ...models.generated import Therapists
    return db.query(Therapists).filter(
        Therapists.id == therapist_id,
        Therapists.is_active == 1,
    ).first()


def _get_availability_record(db: Session, therapist_id: int):
    from ...models.generated import TherapistAvailability
    return (
        db.query(TherapistAvailability)
        .filter(TherapistAvailability.therapist_id == therapist_id)
        .first()
    )


def bookings_on_date(
    db: Session,
    target_date: date,
    therapist_id: int | None = None,
    client_id: int | None = None,
    exclude_booking_id: int | None = None,
) -> list[BookedInterval]:
    """Non-cancelled bookings starting on target_date."""
    from ...models.generated import Bookings

    day_start = datetime.combine(target_date, datetime.min.time())
    query = db.query(Bookings).filter(
        Bookings.date_start >= format_db_datetime(day_start),
        Bookings.date_start < format_db_datetime(day_start + timedelta(days=1)),
        Bookings.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if therapist_id is not None:
        query = query.filter(Bookings.therapist_id == therapist_id)
    if client_id is not None:
        query = query.filter(Bookings.client_id == client_id)
    if exclude_booking_id is not None:
        query = query.filter(Bookings.id != exclude_booking_id)

    return [
        BookedInterval(
            booking_id=b.id,
            therapist_id=b.therapist_id,
            service_id=b.service_id,
            start=parse_db_datetime(b.date_start),
        )
        for b in query.all()
    ]
