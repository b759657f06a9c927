import threading
from datetime import datetime, timedelta

import pytest

from backend.app.errors import (
    CouponError,
    CouponErrorReason,
    NotFoundError,
    PaymentError,
    PaymentRequired,
    PolicyViolation,
    SlotConflict,
    ValidationError,
)
from backend.app.models.enums import BookingStatus
from backend.app.models.generated import (
    Bookings,
    Clients,
    Coupons,
    CouponUsage,
    Payments,
    TherapistAvailability,
    Therapists,
)
from backend.app.services.booking_lifecycle import (
    BookingRequest,
    cancel_booking,
    check_transition,
    commit_booking,
    request_reschedule,
    resolve_reschedule,
    update_booking,
)
from backend.app.services.reminder_checker import check_upcoming_bookings
from backend.app.services.slots.calculator import overlaps
from backend.app.services.slots.config import parse_db_datetime

from .conftest import MONDAY, NOW, add_availability


def at(hour, minute=0, day=MONDAY):
    return datetime.combine(day, datetime.min.time()) + timedelta(hours=hour, minutes=minute)


@pytest.fixture
def commit(db, seed, locks, events):
    def _commit(hour, minute=0, session=None, **overrides):
        values = dict(
            service_id=seed.service_60,
            therapist_id=seed.therapist_id,
            start=at(hour, minute),
            client_id=seed.client_id,
        )
        values.update(overrides)
        return commit_booking(session or db, BookingRequest(**values), now=NOW, locks=locks)
    return _commit


def add_coupon(db, code="AAAA-1111", type="fixed_amount", value=30.0, usage_limit=1, **extra):
    coupon = Coupons(
        code=code,
        type=type,
        value=value,
        valid_from="2026-01-01 00:00:00",
        valid_until="2026-12-31 00:00:00",
        usage_limit=usage_limit,
        **extra,
    )
    db.add(coupon)
    db.commit()
    return coupon


# ── Commit ──────────────────────────────────────────────────────────────


def test_commit_creates_pending_booking(db, seed, commit, events):
    booking = commit(10)

    assert booking.status == "pending"
    assert booking.payment_status == "pending"
    assert booking.date_start == "2026-03-02 10:00:00"
    assert booking.final_price == 100.0
    assert [e for e, _ in events] == ["booking_created"]
    assert events[0][1]["booking_id"] == booking.id


def test_commit_rejects_overlap(db, seed, commit, events):
    commit(10)

    with pytest.raises(SlotConflict) as excinfo:
        commit(9, 30, service_id=seed.service_90, client_id=seed.other_client_id)

    assert excinfo.value.extra["reason"] == "Already booked"
    assert db.query(Bookings).count() == 1
    assert len(events) == 1


def test_long_service_around_existing_booking(db, seed, commit):
    early = Therapists(name="Eva Early")
    db.add(early)
    db.commit()
    add_availability(db, early.id, work_start="07:00")
    commit(10, therapist_id=early.id)

    with pytest.raises(SlotConflict):
        commit(9, 30, therapist_id=early.id, service_id=seed.service_90, client_id=seed.other_client_id)

    booking = commit(8, therapist_id=early.id, service_id=seed.service_90, client_id=seed.other_client_id)
    assert booking.date_start == "2026-03-02 08:00:00"

    after = commit(11, therapist_id=early.id, service_id=seed.service_90, client_id=seed.other_client_id)
    assert after.date_start == "2026-03-02 11:00:00"


def test_commit_rejects_break(db, seed, commit):
    with pytest.raises(SlotConflict) as excinfo:
        commit(12, 30)

    assert excinfo.value.extra["reason"] == "Break"


def test_commit_rejects_off_grid_time(db, seed, commit):
    with pytest.raises(SlotConflict):
        commit(10, 15)


def test_commit_rejects_client_double_booking(db, seed, commit):
    commit(10)

    with pytest.raises(SlotConflict) as excinfo:
        commit(10, 30, therapist_id=seed.other_therapist_id)

    assert excinfo.value.extra["reason"] == "Client already has a booking at this time"


def test_commit_policy_violations(db, seed, commit):
    with pytest.raises(PolicyViolation) as excinfo:
        commit(10, start=at(10, day=MONDAY - timedelta(days=1)))
    assert "Sunday" in excinfo.value.message

    with pytest.raises(PolicyViolation) as excinfo:
        commit(10, start=at(10, day=MONDAY + timedelta(days=70)))
    assert excinfo.value.message == "Bookable at most 60 days in advance"


def test_commit_inside_minimum_notice(db, seed, locks, events):
    request = BookingRequest(
        service_id=seed.service_60,
        therapist_id=seed.therapist_id,
        start=at(10),
        client_id=seed.client_id,
    )

    with pytest.raises(PolicyViolation) as excinfo:
        commit_booking(db, request, now=at(9), locks=locks)

    assert excinfo.value.message == "Minimum advance notice: 2h"


def test_commit_on_blocked_date(db, seed, commit):
    availability = (
        db.query(TherapistAvailability)
        .filter(TherapistAvailability.therapist_id == seed.therapist_id)
        .one()
    )
    availability.blocked_dates = '["2026-03-02"]'
    db.commit()

    with pytest.raises(PolicyViolation) as excinfo:
        commit(10)

    assert excinfo.value.message == "Date is blocked"


def test_commit_unknown_references(db, seed, commit):
    with pytest.raises(NotFoundError):
        commit(10, service_id=999)
    with pytest.raises(NotFoundError):
        commit(10, therapist_id=999)
    with pytest.raises(NotFoundError):
        commit(10, client_id=999)


def test_commit_by_email_creates_client(db, seed, commit):
    booking = commit(10, client_id=None, client_email="New.Client@example.com", client_name="Nora Lind")

    client = db.get(Clients, booking.client_id)
    assert client.email == "new.client@example.com"
    assert client.name == "Nora Lind"


def test_commit_by_email_reuses_client(db, seed, commit):
    booking = commit(10, client_id=None, client_email="MIA@example.com")

    assert booking.client_id == seed.client_id


@pytest.mark.parametrize(
    "hour, extra, error",
    [
        (10, {}, SlotConflict),
        (13, {}, SlotConflict),
        (11, {"coupon_code": "NOPE-0000"}, CouponError),
    ],
)
def test_failed_first_booking_creates_no_client(db, seed, commit, hour, extra, error):
    commit(10)

    with pytest.raises(error):
        commit(hour, client_id=None, client_email="nora@example.com", client_name="Nora Lind", **extra)

    assert db.query(Clients).filter(Clients.email == "nora@example.com").count() == 0


def test_failed_first_booking_on_day_off_creates_no_client(db, seed, commit):
    saturday = MONDAY + timedelta(days=5)

    with pytest.raises(PolicyViolation):
        commit(
            10,
            start=at(10, day=saturday),
            client_id=None,
            client_email="nora@example.com",
            client_name="Nora Lind",
        )

    assert db.query(Clients).filter(Clients.email == "nora@example.com").count() == 0


def test_concurrent_first_bookings_share_one_client(db, seed, session_factory, locks, events):
    barrier = threading.Barrier(2)
    bookings = []

    def attempt(day):
        session = session_factory()
        try:
            barrier.wait()
            booking = commit_booking(
                session,
                BookingRequest(
                    service_id=seed.service_60,
                    therapist_id=seed.therapist_id,
                    start=at(10, day=day),
                    client_email="nora@example.com",
                    client_name="Nora Lind",
                ),
                now=NOW,
                locks=locks,
            )
            bookings.append(booking.client_id)
        finally:
            session.close()

    threads = [
        threading.Thread(target=attempt, args=(MONDAY + timedelta(days=offset),))
        for offset in (0, 1)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    clients = db.query(Clients).filter(Clients.email == "nora@example.com").all()
    assert len(clients) == 1
    assert bookings == [clients[0].id, clients[0].id]


def test_commit_requires_client_identity(db, seed, commit):
    with pytest.raises(ValidationError):
        commit(10, client_id=None)
    with pytest.raises(NotFoundError):
        commit(10, client_id=None, client_email="ghost@example.com")


def test_concurrent_commits_never_double_book(db, seed, session_factory, locks, events):
    clients = [Clients(name=f"Client {i}", email=f"c{i}@example.com") for i in range(6)]
    db.add_all(clients)
    db.commit()
    client_ids = [c.id for c in clients]

    barrier = threading.Barrier(len(client_ids))
    outcomes = []

    def attempt(client_id, hour, minute):
        session = session_factory()
        try:
            barrier.wait()
            commit_booking(
                session,
                BookingRequest(
                    service_id=seed.service_90,
                    therapist_id=seed.therapist_id,
                    start=at(hour, minute),
                    client_id=client_id,
                ),
                now=NOW,
                locks=locks,
            )
            outcomes.append("ok")
        except SlotConflict:
            outcomes.append("conflict")
        finally:
            session.close()

    starts = [(10, 0), (10, 0), (10, 30), (11, 0), (11, 30), (9, 30)]
    threads = [
        threading.Thread(target=attempt, args=(cid, h, m))
        for cid, (h, m) in zip(client_ids, starts)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == len(starts)
    assert "ok" in outcomes

    rows = db.query(Bookings).filter(Bookings.status != "cancelled").all()
    intervals = [
        (parse_db_datetime(b.date_start), parse_db_datetime(b.date_start) + timedelta(minutes=90))
        for b in rows
    ]
    for i, (s1, e1) in enumerate(intervals):
        for s2, e2 in intervals[i + 1:]:
            assert not overlaps(s1, e1, s2, e2)


# ── Coupons and payment at commit ───────────────────────────────────────


def test_commit_with_partial_coupon(db, seed, commit):
    coupon = add_coupon(db)

    booking = commit(10, coupon_code="aaaa-1111")

    assert booking.status == "confirmed"
    assert booking.payment_status == "partial"
    assert booking.discount_amount == 30.0
    assert booking.final_price == 70.0
    assert booking.coupon_id == coupon.id
    db.refresh(coupon)
    assert coupon.status == "used"
    assert db.query(CouponUsage).filter(CouponUsage.booking_id == booking.id).count() == 1


def test_commit_with_free_service_coupon(db, seed, commit):
    add_coupon(db, type="free_service", value=1)

    booking = commit(10, coupon_code="AAAA-1111")

    assert booking.payment_status == "paid"
    assert booking.final_price == 0


def test_coupon_failure_leaves_nothing_behind(db, seed, commit):
    add_coupon(db, status="used")

    with pytest.raises(CouponError) as excinfo:
        commit(10, coupon_code="AAAA-1111")

    assert excinfo.value.reason is CouponErrorReason.INACTIVE
    assert db.query(Bookings).count() == 0


def test_coupon_for_other_service_is_rejected(db, seed, commit):
    add_coupon(db, service_id=seed.service_90)

    with pytest.raises(CouponError) as excinfo:
        commit(10, coupon_code="AAAA-1111")

    assert excinfo.value.reason is CouponErrorReason.SERVICE_MISMATCH


def test_paid_service_requires_proof(db, seed, commit):
    with pytest.raises(PaymentRequired):
        commit(10, service_id=seed.paid_service)

    assert db.query(Bookings).count() == 0


def test_commit_with_payment_proof(db, seed, commit):
    booking = commit(10, service_id=seed.paid_service, payment_proof="tx-100")

    payment = db.query(Payments).filter(Payments.transaction_id == "tx-100").one()
    assert booking.status == "confirmed"
    assert booking.payment_status == "pending"
    assert payment.booking_id == booking.id
    assert payment.amount == 120.0


def test_commit_with_completed_payment(db, seed, commit):
    db.add(Payments(transaction_id="tx-200", status="completed", amount=120.0))
    db.commit()

    booking = commit(10, service_id=seed.paid_service, payment_proof="tx-200")

    assert booking.payment_status == "paid"


def test_commit_with_declined_payment(db, seed, commit):
    db.add(Payments(transaction_id="tx-300", status="failed", amount=120.0))
    db.commit()

    with pytest.raises(PaymentError):
        commit(10, service_id=seed.paid_service, payment_proof="tx-300")

    assert db.query(Bookings).count() == 0


def test_payment_proof_cannot_be_reused(db, seed, commit):
    commit(10, service_id=seed.paid_service, payment_proof="tx-400")

    with pytest.raises(PaymentError):
        commit(15, service_id=seed.paid_service, payment_proof="tx-400")


# ── Transitions ─────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "current, target, changes",
    [
        (BookingStatus.PENDING, BookingStatus.CONFIRMED, True),
        (BookingStatus.PENDING, BookingStatus.CANCELLED, True),
        (BookingStatus.CONFIRMED, BookingStatus.COMPLETED, True),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED, True),
        (BookingStatus.CONFIRMED, BookingStatus.CONFIRMED, False),
        (BookingStatus.CANCELLED, BookingStatus.CANCELLED, False),
    ],
)
def test_allowed_transitions(current, target, changes):
    assert check_transition(current, target) is changes


@pytest.mark.parametrize(
    "current, target",
    [
        (BookingStatus.PENDING, BookingStatus.COMPLETED),
        (BookingStatus.CANCELLED, BookingStatus.CONFIRMED),
        (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, BookingStatus.PENDING),
    ],
)
def test_illegal_transitions(current, target):
    with pytest.raises(ValidationError):
        check_transition(current, target)


# ── Updates and notifications ───────────────────────────────────────────


def test_confirm_emits_one_event(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    update_booking(db, booking.id, status=BookingStatus.CONFIRMED, now=NOW, locks=locks)

    assert [e for e, _ in events] == ["booking_confirmed"]


def test_same_status_is_silent(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    update_booking(db, booking.id, status=BookingStatus.PENDING, now=NOW, locks=locks)

    assert events == []


def test_cancel_wins_over_therapist_change(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    update_booking(
        db, booking.id,
        status=BookingStatus.CANCELLED,
        therapist_id=seed.other_therapist_id,
        now=NOW,
        locks=locks,
    )

    assert [e for e, _ in events] == ["booking_cancelled"]
    db.refresh(booking)
    assert booking.therapist_id == seed.other_therapist_id


def test_confirm_wins_over_therapist_change(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    update_booking(
        db, booking.id,
        status=BookingStatus.CONFIRMED,
        therapist_id=seed.other_therapist_id,
        now=NOW,
        locks=locks,
    )

    assert [e for e, _ in events] == ["booking_confirmed"]


def test_therapist_change_alone(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    update_booking(db, booking.id, therapist_id=seed.other_therapist_id, now=NOW, locks=locks)

    assert [e for e, _ in events] == ["therapist_changed"]
    assert events[0][1]["previous_therapist_id"] == seed.therapist_id


def test_therapist_change_checks_new_calendar(db, seed, commit, events, locks):
    booking = commit(10)
    commit(10, 30, therapist_id=seed.other_therapist_id, client_id=seed.other_client_id)
    events.clear()

    with pytest.raises(SlotConflict):
        update_booking(db, booking.id, therapist_id=seed.other_therapist_id, now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.therapist_id == seed.therapist_id
    assert events == []


def test_illegal_update_changes_nothing(db, seed, commit, events, locks):
    booking = commit(10)
    events.clear()

    with pytest.raises(ValidationError):
        update_booking(
            db, booking.id,
            status=BookingStatus.COMPLETED,
            therapist_id=seed.other_therapist_id,
            now=NOW,
            locks=locks,
        )

    db.refresh(booking)
    assert booking.status == "pending"
    assert booking.therapist_id == seed.therapist_id
    assert events == []


def test_cancel_keeps_reason_and_frees_slot(db, seed, commit, events):
    booking = commit(10)

    cancelled = cancel_booking(db, booking.id, reason="Client is ill", now=NOW)

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "Client is ill"
    assert events[-1][0] == "booking_cancelled"

    again = commit(10, client_id=seed.other_client_id)
    assert again.status == "pending"


def test_cancel_completed_booking_fails(db, seed, commit, locks):
    booking = commit(10)
    update_booking(db, booking.id, status=BookingStatus.CONFIRMED, now=NOW, locks=locks)
    update_booking(db, booking.id, status=BookingStatus.COMPLETED, now=NOW, locks=locks)

    with pytest.raises(ValidationError):
        cancel_booking(db, booking.id, now=NOW)


# ── Rescheduling ────────────────────────────────────────────────────────


def test_reschedule_request_keeps_booking(db, seed, commit, events):
    booking = commit(10)
    events.clear()

    request_reschedule(db, booking.id, at(15), reason="Train delay", now=NOW)

    db.refresh(booking)
    assert booking.date_start == "2026-03-02 10:00:00"
    assert booking.status == "pending"
    assert booking.reschedule_new_date == "2026-03-02 15:00:00"
    assert booking.reschedule_reason == "Train delay"
    assert [e for e, _ in events] == ["reschedule_requested"]


def test_reschedule_approved(db, seed, commit, events, locks):
    booking = commit(10)
    request_reschedule(db, booking.id, at(15), now=NOW)
    events.clear()

    resolve_reschedule(db, booking.id, approve=True, response="See you then", now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.date_start == "2026-03-02 15:00:00"
    assert booking.status == "confirmed"
    assert booking.reschedule_new_date is None
    assert booking.reschedule_response == "See you then"
    assert [e for e, _ in events] == ["booking_rescheduled"]
    assert events[0][1]["old_date"] == "2026-03-02 10:00:00"


def test_approved_reschedule_rearms_reminder(db, seed, commit, events, locks, session_factory):
    booking = commit(10)
    booking.reminder_sent = 1
    db.commit()
    request_reschedule(db, booking.id, at(15), now=NOW)
    events.clear()

    resolve_reschedule(db, booking.id, approve=True, now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.reminder_sent == 0
    reminded = check_upcoming_bookings(now=at(9), session_factory=session_factory)
    assert reminded == [booking.id]


def test_reschedule_into_own_slot_overlap_is_allowed(db, seed, commit, locks):
    booking = commit(10)
    request_reschedule(db, booking.id, at(10, 30), now=NOW)

    resolve_reschedule(db, booking.id, approve=True, now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.date_start == "2026-03-02 10:30:00"


def test_reschedule_approval_rechecks_conflicts(db, seed, commit, events, locks):
    booking = commit(10)
    commit(15, client_id=seed.other_client_id)
    request_reschedule(db, booking.id, at(15, 30), now=NOW)
    events.clear()

    with pytest.raises(SlotConflict):
        resolve_reschedule(db, booking.id, approve=True, now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.date_start == "2026-03-02 10:00:00"
    assert booking.reschedule_new_date == "2026-03-02 15:30:00"
    assert events == []


def test_reschedule_rejected(db, seed, commit, events, locks):
    booking = commit(10)
    request_reschedule(db, booking.id, at(15), now=NOW)
    events.clear()

    resolve_reschedule(db, booking.id, approve=False, response="Fully booked", now=NOW, locks=locks)

    db.refresh(booking)
    assert booking.date_start == "2026-03-02 10:00:00"
    assert booking.reschedule_new_date is None
    assert booking.reschedule_response == "Fully booked"
    assert [e for e, _ in events] == ["reschedule_rejected"]


def test_reschedule_cancelled_booking_fails(db, seed, commit):
    booking = commit(10)
    cancel_booking(db, booking.id, now=NOW)

    with pytest.raises(ValidationError):
        request_reschedule(db, booking.id, at(15), now=NOW)


def test_resolve_without_request_fails(db, seed, commit, locks):
    booking = commit(10)

    with pytest.raises(ValidationError):
        resolve_reschedule(db, booking.id, approve=True, now=NOW, locks=locks)
