# backend/app/services/booking_payment.py
"""
Booking payment processing service.

Payments are keyed by the provider transaction id (unique), which makes
every transition idempotent:
  register_payment_proof()  attach a transaction to a booking (commit time)
  on_payment_result()       apply a provider signal (paid / failed)
  poll_payment_status()     async poller for providers without callbacks

A paid signal marks the payment completed, the booking paid and moves a
pending booking to confirmed. A failed signal marks the payment failed and
the booking overdue; the booking itself stays.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..errors import NotFoundError, PaymentError, StorageError, ValidationError
from ..models.enums import BookingStatus, PaymentOutcome, PaymentRecordStatus, PaymentStatus
from ..models.generated import (
    Bookings as DBBooking,
    Payments as DBPayment,
)
from .events import booking_payload, emit_event
from .locks import LockManager, booking_locks, payment_key
from .slots.config import format_db_datetime

logger = logging.getLogger(__name__)

StatusChecker = Callable[[str], Awaitable[Optional[PaymentOutcome]]]


@dataclass
class PaymentResult:
    payment: DBPayment
    applied: bool


def booking_transaction_id(booking_id: int) -> str:
    return f"booking-{booking_id}"


def find_payment(db: Session, transaction_id: str) -> Optional[DBPayment]:
    return db.query(DBPayment).filter(DBPayment.transaction_id == transaction_id).first()


def register_payment_proof(
    db: Session,
    transaction_id: str,
    amount: Optional[float],
    booking_id: Optional[int] = None,
    method: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBPayment:
    """
    Record a provider transaction for a booking inside the caller's transaction.

    A transaction already reported as failed, or already attached to
    another booking, is rejected with PaymentError. Does not commit.
    """
    transaction_id = (transaction_id or "").strip()
    if not transaction_id:
        raise ValidationError("Payment proof is empty")
    now_str = format_db_datetime(now or datetime.now())

    payment = find_payment(db, transaction_id)
    if payment:
        if payment.status == PaymentRecordStatus.FAILED.value:
            raise PaymentError(f"Payment {transaction_id} was declined")
        if payment.booking_id is not None and payment.booking_id != booking_id:
            raise PaymentError(f"Payment {transaction_id} belongs to another booking")
        payment.booking_id = booking_id
        if payment.amount is None:
            payment.amount = amount
        payment.updated_at = now_str
        db.flush()
        return payment

    payment = DBPayment(
        transaction_id=transaction_id,
        booking_id=booking_id,
        amount=amount,
        method=method,
        status=PaymentRecordStatus.PENDING.value,
        created_at=now_str,
        updated_at=now_str,
    )
    db.add(payment)
    db.flush()
    return payment


def on_payment_result(
    db: Session,
    reference: str,
    outcome: PaymentOutcome,
    amount: Optional[float] = None,
    now: Optional[datetime] = None,
    locks: LockManager = booking_locks,
) -> PaymentResult:
    """
    Apply a provider payment signal.

    reference is the provider transaction id; a bare booking id is accepted
    for providers that only echo the order number. Redelivery of an
    already applied outcome changes nothing, also when deliveries race:
    the status is re-read and changed under the transaction's lock.
    """
    reference = (reference or "").strip()
    now_str = format_db_datetime(now or datetime.now())

    transaction_id = reference
    signal_booking = None
    payment = find_payment(db, reference)
    if payment is None and reference.isdigit():
        signal_booking = db.get(DBBooking, int(reference))
        if signal_booking:
            transaction_id = booking_transaction_id(signal_booking.id)
            payment = find_payment(db, transaction_id)
    if payment is None and signal_booking is None:
        raise NotFoundError(f"Unknown payment reference {reference}")

    with locks.hold(payment_key(transaction_id)):
        try:
            if payment is None:
                payment = _insert_signal_payment(db, transaction_id, signal_booking, amount, now_str)
            else:
                db.refresh(payment)
            applied, booking = _transition(db, payment, outcome, amount, now_str)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Could not apply payment result") from e

    if not applied:
        return PaymentResult(payment=payment, applied=False)

    db.refresh(payment)
    logger.info(
        f"Payment {payment.transaction_id} → {payment.status}"
        f" (booking={payment.booking_id}, amount={payment.amount})"
    )
    if booking:
        event = "payment_received" if outcome is PaymentOutcome.PAID else "payment_failed"
        emit_event(event, booking_payload(
            booking,
            transaction_id=payment.transaction_id,
            amount=payment.amount,
            payment_status=booking.payment_status,
        ))

    return PaymentResult(payment=payment, applied=True)


def _insert_signal_payment(
    db: Session,
    transaction_id: str,
    booking: DBBooking,
    amount: Optional[float],
    now_str: str,
) -> DBPayment:
    """Ledger row for a signal that names a booking instead of a transaction."""
    booking_id = booking.id
    final_price = booking.final_price
    payment = DBPayment(
        transaction_id=transaction_id,
        booking_id=booking_id,
        amount=amount if amount is not None else final_price,
        status=PaymentRecordStatus.PENDING.value,
        created_at=now_str,
        updated_at=now_str,
    )
    db.add(payment)
    try:
        db.commit()
    except IntegrityError:
        # another worker recorded the same signal first
        db.rollback()
        return db.query(DBPayment).filter(DBPayment.transaction_id == transaction_id).one()
    return payment


def _transition(
    db: Session,
    payment: DBPayment,
    outcome: PaymentOutcome,
    amount: Optional[float],
    now_str: str,
) -> tuple[bool, Optional[DBBooking]]:
    target = (
        PaymentRecordStatus.COMPLETED if outcome is PaymentOutcome.PAID
        else PaymentRecordStatus.FAILED
    )
    current = PaymentRecordStatus(payment.status)

    if current is target:
        logger.info(f"Payment {payment.transaction_id}: duplicate {outcome.value} signal ignored")
        return False, None

    if current is PaymentRecordStatus.COMPLETED:
        logger.warning(
            f"Payment {payment.transaction_id}: {outcome.value} after completion ignored"
        )
        return False, None

    payment.status = target.value
    if amount is not None:
        payment.amount = amount
    payment.updated_at = now_str

    booking = db.get(DBBooking, payment.booking_id) if payment.booking_id else None
    if booking:
        if outcome is PaymentOutcome.PAID:
            booking.payment_status = PaymentStatus.PAID.value
            if booking.status == BookingStatus.PENDING.value:
                booking.status = BookingStatus.CONFIRMED.value
        else:
            booking.payment_status = PaymentStatus.OVERDUE.value
        booking.updated_at = now_str

    db.commit()
    return True, booking


# ── Provider polling ─────────────────────────────────────────────────────


class HttpPaymentStatusChecker:
    """
    Asks the provider for a transaction status.

    GET {base_url}/{transaction_id} → {"status": "paid" | "failed" | ...}
    Anything else (including HTTP errors) means "not decided yet".
    """

    def __init__(self, base_url: str | None = None, timeout: float = 10.0):
        base_url = base_url or settings.payment_status_url
        if not base_url:
            raise ValueError("payment_status_url is not configured")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def __call__(self, transaction_id: str) -> Optional[PaymentOutcome]:
        url = f"{self.base_url}/{transaction_id}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Payment status request failed: {url} -> {e}")
                return None

        try:
            return PaymentOutcome(str(data.get("status", "")).lower())
        except ValueError:
            return None


async def poll_payment_status(
    transaction_id: str,
    checker: StatusChecker,
    interval: float | None = None,
    timeout: float | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> PaymentResult:
    """
    Poll the provider until it reports an outcome, then apply it.

    No lock or session is held while waiting. Raises PaymentError when the
    deadline passes; cancelling the task leaves payment and booking as they were.
    """
    interval = interval if interval is not None else settings.payment_poll_interval_seconds
    timeout = timeout if timeout is not None else settings.payment_poll_timeout_seconds

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    try:
        while True:
            outcome = await checker(transaction_id)
            if outcome is not None:
                return await asyncio.to_thread(
                    _apply_outcome, session_factory, transaction_id, outcome
                )
            if loop.time() + interval > deadline:
                logger.warning(f"Payment {transaction_id}: no outcome after {timeout}s")
                raise PaymentError(f"Payment {transaction_id} was not confirmed in time")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info(f"Payment polling for {transaction_id} cancelled")
        raise


def _apply_outcome(
    session_factory: Callable[[], Session],
    transaction_id: str,
    outcome: PaymentOutcome,
) -> PaymentResult:
    db = session_factory()
    try:
        result = on_payment_result(db, transaction_id, outcome)
        db.expunge(result.payment)
        return result
    finally:
        db.close()
