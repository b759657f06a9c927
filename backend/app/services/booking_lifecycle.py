# backend/app/services/booking_lifecycle.py
"""
Booking lifecycle: commit, status changes, reassignment and rescheduling.

Status transitions:
  pending   → confirmed | cancelled
  confirmed → cancelled | completed
  cancelled, completed: terminal
Setting the current status again is a no-op.

Every write that can create an overlap (commit, approved reschedule,
therapist reassignment) re-runs the conflict check inside the serializing
boundary (services/locks.py) and commits before leaving it.

Notifications (services/events.py), at most one per call:
  booking_created, booking_cancelled, booking_confirmed, therapist_changed,
  reschedule_requested, booking_rescheduled, reschedule_rejected
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import (
    BookingError,
    NotFoundError,
    PaymentRequired,
    PolicyViolation,
    SlotConflict,
    StorageError,
    ValidationError,
)
from ..models.enums import BookingStatus, PaymentRecordStatus, PaymentStatus
from ..models.generated import (
    Bookings as DBBooking,
    Clients as DBClient,
    Services as DBService,
    Therapists as DBTherapist,
)
from .booking_payment import register_payment_proof
from .coupon_ledger import record_redemption, validate_coupon
from .events import booking_payload, emit_event
from .locks import (
    LockManager,
    booking_locks,
    client_day_key,
    coupon_key,
    new_client_key,
    therapist_day_key,
)
from .slots.availability import (
    BOOKED_REASON,
    CLIENT_BUSY_REASON,
    DayAvailability,
    bookings_on_date,
    calculate_therapist_availability,
    find_client_by_email,
    load_rules,
    service_durations,
)
from .slots.calculator import BREAK_REASON, OVERRUN_REASON, overlaps
from .slots.config import BookingConfig, format_db_datetime, get_booking_config, parse_db_datetime

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

# slot reasons that mean "taken", everything else is a policy refusal
CONFLICT_REASONS = frozenset({BREAK_REASON, OVERRUN_REASON, BOOKED_REASON, CLIENT_BUSY_REASON})


@dataclass
class BookingRequest:
    service_id: int
    therapist_id: int
    start: datetime
    client_id: Optional[int] = None
    client_email: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    coupon_code: Optional[str] = None
    payment_proof: Optional[str] = None


def is_terminal(status: BookingStatus) -> bool:
    return not TRANSITIONS[status]


def check_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """True if the status changes, False for a no-op; ValidationError if illegal."""
    if current is target:
        return False
    if target not in TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot change booking status from {current.value} to {target.value}",
            current=current.value,
            requested=target.value,
        )
    return True


def require_bookable(availability: DayAvailability, start: datetime) -> None:
    """Raise unless `start` is a generated, available slot of `availability`."""
    if not availability.day_available:
        raise PolicyViolation(availability.reason or "Therapist is unavailable on this date")

    if start.second or start.microsecond:
        raise SlotConflict("Requested time is not on the booking grid", time=start.strftime("%H:%M:%S"))

    time_str = start.strftime("%H:%M")
    slot = availability.find(time_str)
    if slot is None:
        raise SlotConflict("Requested time is not on the booking grid", time=time_str)
    if slot.available:
        return
    if slot.reason in CONFLICT_REASONS:
        raise SlotConflict(
            f"Slot {time_str} is not available: {slot.reason}",
            time=time_str,
            reason=slot.reason,
            occupied_by=slot.occupied_by,
        )
    raise PolicyViolation(slot.reason or "Slot is not bookable", time=time_str)


# ── Commit ───────────────────────────────────────────────────────────────


def commit_booking(
    db: Session,
    request: BookingRequest,
    now: Optional[datetime] = None,
    locks: LockManager = booking_locks,
    config: Optional[BookingConfig] = None,
) -> DBBooking:
    """
    Create a booking after re-checking the slot inside the boundary.

    Coupon redemption and payment registration share the booking's
    transaction: any failure leaves nothing behind.
    """
    now = now or datetime.now()
    config = config or get_booking_config()

    if request.start is None:
        raise ValidationError("Start time is required")
    start = request.start.replace(tzinfo=None)

    service = db.get(DBService, request.service_id)
    if not service or not service.is_active:
        raise NotFoundError(f"Service {request.service_id} not found")

    coupon_code = (request.coupon_code or "").strip() or None
    payment_proof = (request.payment_proof or "").strip() or None
    if (
        settings.payment_required
        and service.requires_payment
        and service.price > 0
        and not coupon_code
        and not payment_proof
    ):
        raise PaymentRequired("Payment or coupon is required for this service")

    client = _find_client(db, request)
    email = (request.client_email or "").strip().lower()

    keys = [therapist_day_key(request.therapist_id, start.date())]
    if client is not None:
        keys.append(client_day_key(client.id, start.date()))
    else:
        keys.append(new_client_key(email))
    if coupon_code:
        keys.append(coupon_key(coupon_code))

    with ExitStack() as held:
        held.enter_context(locks.hold_all(*keys))
        try:
            if client is None:
                client = find_client_by_email(db, email)
                if client is not None:
                    # created by a concurrent first booking since the lookup
                    held.enter_context(locks.hold(client_day_key(client.id, start.date())))
                else:
                    client = _add_client(db, request, email)

            availability = calculate_therapist_availability(
                db,
                request.therapist_id,
                start.date(),
                service.duration_min,
                client_id=client.id,
                now=now,
                config=config,
            )
            require_bookable(availability, start)

            validation = None
            if coupon_code:
                validation = validate_coupon(
                    db,
                    coupon_code,
                    service_id=service.id,
                    client_id=client.id,
                    charge_amount=service.price,
                    now=now,
                )

            discount = validation.discount_amount if validation else 0.0
            now_str = format_db_datetime(now)
            booking = DBBooking(
                client_id=client.id,
                service_id=service.id,
                therapist_id=request.therapist_id,
                date_start=format_db_datetime(start),
                status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                notes=request.notes,
                final_price=round(service.price - discount, 2),
                discount_amount=discount,
                coupon_id=validation.coupon.id if validation else None,
                created_at=now_str,
                updated_at=now_str,
            )
            db.add(booking)
            db.flush()

            if validation:
                record_redemption(db, validation.coupon, booking.id, client.id, discount, now)

            payment = None
            if payment_proof:
                payment = register_payment_proof(
                    db, payment_proof, booking.final_price, booking_id=booking.id, now=now
                )

            if validation or payment:
                booking.status = BookingStatus.CONFIRMED.value
            booking.payment_status = _initial_payment_status(
                payment, discount, service.price, coupon_used=validation is not None
            ).value

            db.commit()
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Booking commit failed: {e}")
            raise StorageError("Could not save booking") from e

    db.refresh(booking)
    logger.info(
        f"Booking {booking.id} created: therapist={booking.therapist_id} "
        f"client={booking.client_id} at {booking.date_start} "
        f"status={booking.status} payment={booking.payment_status}"
    )
    emit_event("booking_created", booking_payload(
        booking,
        final_price=booking.final_price,
        discount_amount=booking.discount_amount,
        payment_status=booking.payment_status,
    ))
    return booking


def _initial_payment_status(payment, discount: float, price: float, coupon_used: bool) -> PaymentStatus:
    if payment is not None and payment.status == PaymentRecordStatus.COMPLETED.value:
        return PaymentStatus.PAID
    if coupon_used and discount >= price:
        return PaymentStatus.PAID
    if coupon_used and discount > 0:
        return PaymentStatus.PARTIAL
    return PaymentStatus.PENDING


def _find_client(db: Session, request: BookingRequest) -> Optional[DBClient]:
    """
    Client by id, or by email. None means a first booking that will create
    the client inside the commit transaction (a name is required for that).
    """
    if request.client_id is not None:
        client = db.get(DBClient, request.client_id)
        if not client:
            raise NotFoundError(f"Client {request.client_id} not found")
        return client

    email = (request.client_email or "").strip()
    if not email:
        raise ValidationError("client_id or client_email is required")

    client = find_client_by_email(db, email)
    if client is None and not (request.client_name or "").strip():
        raise NotFoundError(f"Client {email} not found")
    return client


def _add_client(db: Session, request: BookingRequest, email: str) -> DBClient:
    """Stage a new client; it is committed or rolled back with the booking."""
    client = DBClient(name=request.client_name.strip(), email=email, phone=request.client_phone)
    db.add(client)
    db.flush()
    logger.info(f"Client {client.id} staged for {client.email}")
    return client


# ── Status and therapist changes ─────────────────────────────────────────


def get_booking(db: Session, booking_id: int) -> DBBooking:
    booking = db.get(DBBooking, booking_id)
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def update_booking(
    db: Session,
    booking_id: int,
    status: Optional[BookingStatus] = None,
    therapist_id: Optional[int] = None,
    cancel_reason: Optional[str] = None,
    now: Optional[datetime] = None,
    locks: LockManager = booking_locks,
) -> DBBooking:
    """
    Change status and/or therapist in one transaction.

    Emits exactly one notification, by priority: cancelled, confirmed,
    therapist_changed. Nothing is emitted when nothing changed.
    """
    now = now or datetime.now()
    booking = get_booking(db, booking_id)
    old_status = BookingStatus(booking.status)
    old_therapist = booking.therapist_id

    status_changed = status is not None and check_transition(old_status, status)
    new_status = status if status_changed else old_status
    therapist_changed = therapist_id is not None and therapist_id != old_therapist

    if not status_changed and not therapist_changed:
        return booking

    if therapist_changed and is_terminal(old_status):
        raise ValidationError(f"Cannot reassign a {old_status.value} booking")

    start = parse_db_datetime(booking.date_start)
    keys = []
    if therapist_changed:
        keys.append(therapist_day_key(therapist_id, start.date()))

    with locks.hold_all(*keys):
        try:
            if therapist_changed and new_status is not BookingStatus.CANCELLED:
                _check_therapist_free(db, booking, therapist_id, start)
            elif therapist_changed:
                _get_active_therapist(db, therapist_id)

            if status_changed:
                booking.status = new_status.value
                if new_status is BookingStatus.CANCELLED and cancel_reason:
                    booking.cancel_reason = cancel_reason
            if therapist_changed:
                booking.therapist_id = therapist_id
            booking.updated_at = format_db_datetime(now)
            db.commit()
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Could not update booking") from e

    db.refresh(booking)
    logger.info(
        f"Booking {booking.id} updated: status {old_status.value}→{booking.status}, "
        f"therapist {old_therapist}→{booking.therapist_id}"
    )

    if status_changed and new_status is BookingStatus.CANCELLED:
        emit_event("booking_cancelled", booking_payload(booking, cancel_reason=booking.cancel_reason))
    elif status_changed and new_status is BookingStatus.CONFIRMED:
        emit_event("booking_confirmed", booking_payload(booking))
    elif therapist_changed:
        emit_event("therapist_changed", booking_payload(booking, previous_therapist_id=old_therapist))

    return booking


def cancel_booking(
    db: Session,
    booking_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBBooking:
    return update_booking(db, booking_id, status=BookingStatus.CANCELLED, cancel_reason=reason, now=now)


def _get_active_therapist(db: Session, therapist_id: int) -> DBTherapist:
    therapist = db.get(DBTherapist, therapist_id)
    if not therapist or not therapist.is_active:
        raise NotFoundError(f"Therapist {therapist_id} not found")
    return therapist


def _check_therapist_free(db: Session, booking: DBBooking, therapist_id: int, start: datetime) -> None:
    """Overlap check of a booking against another therapist's day."""
    _get_active_therapist(db, therapist_id)
    config = get_booking_config()
    durations = service_durations(db)
    rules = load_rules(db, therapist_id)
    buffer = timedelta(minutes=rules.buffer_minutes if rules else 0)

    def duration(service_id: int) -> timedelta:
        return timedelta(minutes=durations.get(service_id, config.default_service_duration))

    end = start + duration(booking.service_id)
    for other in bookings_on_date(db, start.date(), therapist_id=therapist_id, exclude_booking_id=booking.id):
        if overlaps(start, end, other.start - buffer, other.start + duration(other.service_id) + buffer):
            raise SlotConflict(
                f"Therapist {therapist_id} already has booking {other.booking_id} at this time",
                occupied_by=therapist_id,
            )


# ── Rescheduling ─────────────────────────────────────────────────────────


def request_reschedule(
    db: Session,
    booking_id: int,
    new_start: datetime,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBBooking:
    """Attach a move proposal; status and time stay as they are."""
    now = now or datetime.now()
    booking = get_booking(db, booking_id)
    status = BookingStatus(booking.status)
    if is_terminal(status):
        raise ValidationError(f"Cannot reschedule a {status.value} booking")
    if new_start is None:
        raise ValidationError("New date is required")

    booking.reschedule_new_date = format_db_datetime(new_start.replace(tzinfo=None))
    booking.reschedule_reason = reason
    booking.reschedule_requested_at = format_db_datetime(now)
    booking.reschedule_response = None
    booking.updated_at = format_db_datetime(now)
    db.commit()
    db.refresh(booking)

    logger.info(f"Booking {booking.id}: reschedule to {booking.reschedule_new_date} requested")
    emit_event("reschedule_requested", booking_payload(
        booking,
        new_date=booking.reschedule_new_date,
        reason=reason,
    ))
    return booking


def resolve_reschedule(
    db: Session,
    booking_id: int,
    approve: bool,
    response: Optional[str] = None,
    now: Optional[datetime] = None,
    locks: LockManager = booking_locks,
    config: Optional[BookingConfig] = None,
) -> DBBooking:
    """
    Approve or reject a pending reschedule proposal.

    Approval re-runs the full availability check for the new time,
    ignoring the booking being moved, and confirms the booking.
    """
    now = now or datetime.now()
    booking = get_booking(db, booking_id)
    if not booking.reschedule_new_date:
        raise ValidationError("Booking has no pending reschedule request")
    status = BookingStatus(booking.status)
    if is_terminal(status):
        raise ValidationError(f"Cannot reschedule a {status.value} booking")

    old_date = booking.date_start
    new_start = parse_db_datetime(booking.reschedule_new_date)

    if not approve:
        _clear_proposal(booking, response, now)
        db.commit()
        db.refresh(booking)
        logger.info(f"Booking {booking.id}: reschedule rejected")
        emit_event("reschedule_rejected", booking_payload(booking, response=response))
        return booking

    service = db.get(DBService, booking.service_id)
    duration = service.duration_min if service else get_booking_config().default_service_duration

    with locks.hold_all(
        therapist_day_key(booking.therapist_id, new_start.date()),
        client_day_key(booking.client_id, new_start.date()),
    ):
        try:
            availability = calculate_therapist_availability(
                db,
                booking.therapist_id,
                new_start.date(),
                duration,
                client_id=booking.client_id,
                exclude_booking_id=booking.id,
                now=now,
                config=config,
            )
            require_bookable(availability, new_start)

            check_transition(status, BookingStatus.CONFIRMED)
            booking.date_start = format_db_datetime(new_start)
            booking.status = BookingStatus.CONFIRMED.value
            booking.reminder_sent = 0
            _clear_proposal(booking, response, now)
            db.commit()
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Could not reschedule booking") from e

    db.refresh(booking)
    logger.info(f"Booking {booking.id} moved {old_date} → {booking.date_start}")
    emit_event("booking_rescheduled", booking_payload(booking, old_date=old_date, response=response))
    return booking


def _clear_proposal(booking: DBBooking, response: Optional[str], now: datetime) -> None:
    booking.reschedule_new_date = None
    booking.reschedule_reason = None
    booking.reschedule_requested_at = None
    booking.reschedule_response = response
    booking.updated_at = format_db_datetime(now)
