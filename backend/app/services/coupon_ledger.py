"""
Coupon ledger: validation, discount calculation and redemption.

Codes are matched case-insensitively (stored uppercase, format XXXX-XXXX).

Redemption is one conditional UPDATE:
  used_count = used_count + 1, status → 'used' when the limit is reached,
  only WHERE status = 'active' AND used_count < usage_limit
plus one append-only coupon_usage row. A redemption that loses a race
updates zero rows and fails with LIMIT_REACHED.
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import CouponError, CouponErrorReason, NotFoundError, StorageError, ValidationError
from ..models.enums import CouponStatus, CouponType
from ..models.generated import (
    Coupons as DBCoupon,
    CouponUsage as DBCouponUsage,
    Services as DBService,
)
from .locks import LockManager, booking_locks, coupon_key
from .slots.availability import find_client_by_email
from .slots.config import format_db_datetime, parse_db_datetime

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_GENERATION_ATTEMPTS = 10


@dataclass
class CouponValidation:
    coupon: DBCoupon
    charge_amount: Optional[float]
    discount_amount: Optional[float]


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon_type: CouponType, value: float, charge_amount: float) -> float:
    """Discount for a charge; never more than the charge itself."""
    if coupon_type is CouponType.FIXED_AMOUNT:
        return min(value, charge_amount)
    if coupon_type is CouponType.PERCENTAGE:
        return min(charge_amount * value / 100, charge_amount)
    if coupon_type is CouponType.FREE_SERVICE:
        return charge_amount
    raise ValueError(f"Unhandled coupon type: {coupon_type}")


def validate_coupon(
    db: Session,
    code: str,
    service_id: Optional[int] = None,
    client_id: Optional[int] = None,
    client_email: Optional[str] = None,
    charge_amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> CouponValidation:
    """
    Check a code against eligibility rules and compute the discount.

    The charge defaults to the service price when a service is given.
    Raises CouponError with the first failing reason.
    """
    now = now or datetime.now()
    normalized = normalize_code(code)
    if not normalized:
        raise ValidationError("Coupon code is required")

    coupon = (
        db.query(DBCoupon)
        .filter(func.upper(DBCoupon.code) == normalized)
        .first()
    )
    if not coupon:
        raise CouponError(CouponErrorReason.NOT_FOUND, "Coupon code is invalid")

    status = CouponStatus(coupon.status)
    if status is not CouponStatus.ACTIVE:
        raise CouponError(CouponErrorReason.INACTIVE, _inactive_message(status))

    if coupon.valid_from and parse_db_datetime(coupon.valid_from) > now:
        raise CouponError(CouponErrorReason.INACTIVE, "Coupon is not valid yet")

    if parse_db_datetime(coupon.valid_until) < now:
        raise CouponError(CouponErrorReason.EXPIRED, "Coupon has expired")

    if coupon.used_count >= coupon.usage_limit:
        raise CouponError(CouponErrorReason.LIMIT_REACHED, "Coupon usage limit reached")

    if coupon.client_id is not None and (client_id is not None or client_email):
        if client_id is None:
            client = find_client_by_email(db, client_email)
            client_id = client.id if client else None
        if client_id != coupon.client_id:
            raise CouponError(
                CouponErrorReason.CLIENT_MISMATCH,
                "Coupon is not valid for this client",
            )

    if coupon.service_id is not None and service_id is not None and coupon.service_id != service_id:
        raise CouponError(
            CouponErrorReason.SERVICE_MISMATCH,
            "Coupon is not valid for the selected service",
        )

    if charge_amount is None and service_id is not None:
        service = db.get(DBService, service_id)
        charge_amount = service.price if service else None

    discount = None
    if charge_amount is not None:
        discount = round(compute_discount(CouponType(coupon.type), coupon.value, charge_amount), 2)

    return CouponValidation(coupon=coupon, charge_amount=charge_amount, discount_amount=discount)


def _inactive_message(status: CouponStatus) -> str:
    if status is CouponStatus.USED:
        return "Coupon has already been used"
    if status is CouponStatus.EXPIRED:
        return "Coupon has expired"
    if status is CouponStatus.CANCELLED:
        return "Coupon has been cancelled"
    if status is CouponStatus.ACTIVE:
        return "Coupon is active"
    raise ValueError(f"Unhandled coupon status: {status}")


def record_redemption(
    db: Session,
    coupon: DBCoupon,
    booking_id: int,
    client_id: int,
    discount_applied: float,
    now: Optional[datetime] = None,
) -> DBCouponUsage:
    """
    Consume one use of a coupon inside the caller's transaction.

    Does not commit. Raises CouponError(LIMIT_REACHED) when the guarded
    UPDATE matches no row.
    """
    now_str = format_db_datetime(now or datetime.now())

    result = db.execute(
        update(DBCoupon)
        .where(
            DBCoupon.id == coupon.id,
            DBCoupon.status == CouponStatus.ACTIVE.value,
            DBCoupon.used_count < DBCoupon.usage_limit,
        )
        .values(
            used_count=DBCoupon.used_count + 1,
            status=case(
                (DBCoupon.used_count + 1 >= DBCoupon.usage_limit, CouponStatus.USED.value),
                else_=DBCoupon.status,
            ),
            updated_at=now_str,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(f"Coupon {coupon.code} redemption lost: limit reached")
        raise CouponError(CouponErrorReason.LIMIT_REACHED, "Coupon usage limit reached")

    usage = DBCouponUsage(
        coupon_id=coupon.id,
        booking_id=booking_id,
        used_by=client_id,
        discount_applied=discount_applied,
        used_at=now_str,
    )
    db.add(usage)
    db.flush()
    db.expire(coupon)
    return usage


def redeem_coupon(
    db: Session,
    coupon_id: int,
    booking_id: int,
    client_id: int,
    discount_applied: float,
    now: Optional[datetime] = None,
    locks: LockManager = booking_locks,
) -> DBCouponUsage:
    """Standalone redemption: per-code lock, guarded update, commit."""
    coupon = db.get(DBCoupon, coupon_id)
    if not coupon:
        raise CouponError(CouponErrorReason.NOT_FOUND, "Coupon not found")
    if discount_applied < 0:
        raise ValidationError("Discount cannot be negative")

    with locks.hold(coupon_key(coupon.code)):
        try:
            usage = record_redemption(db, coupon, booking_id, client_id, discount_applied, now)
            db.commit()
        except CouponError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Could not record coupon redemption") from e

    db.refresh(usage)
    logger.info(
        f"Coupon {coupon.code} redeemed for booking {booking_id} "
        f"by client {client_id}: -{discount_applied:.2f}"
    )
    return usage


# ── Administration ───────────────────────────────────────────────────────


def generate_coupon_code() -> str:
    """XXXX-XXXX from A-Z and 0-9."""
    left = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    right = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
    return f"{left}-{right}"


def create_coupon(
    db: Session,
    coupon_type: CouponType,
    value: float,
    valid_until: datetime,
    usage_limit: int = 1,
    service_id: Optional[int] = None,
    client_id: Optional[int] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
    code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DBCoupon:
    """Create an active coupon with a unique code (generated unless given)."""
    now = now or datetime.now()
    if value <= 0:
        raise ValidationError("Coupon value must be positive")
    if coupon_type is CouponType.PERCENTAGE and value > 100:
        raise ValidationError("Percentage coupons cannot exceed 100")
    if usage_limit < 1:
        raise ValidationError("Usage limit must be at least 1")
    if valid_until <= now:
        raise ValidationError("Valid-until date must be in the future")

    if code:
        code = normalize_code(code)
        if _code_exists(db, code):
            raise ValidationError(f"Coupon code {code} already exists")
    else:
        for _ in range(CODE_GENERATION_ATTEMPTS):
            candidate = generate_coupon_code()
            if not _code_exists(db, candidate):
                code = candidate
                break
        if not code:
            raise StorageError("Could not generate a unique coupon code")

    coupon = DBCoupon(
        code=code,
        type=coupon_type.value,
        value=value,
        service_id=service_id,
        client_id=client_id,
        valid_from=format_db_datetime(now),
        valid_until=format_db_datetime(valid_until),
        usage_limit=usage_limit,
        used_count=0,
        status=CouponStatus.ACTIVE.value,
        description=description or "",
        created_by=created_by,
    )
    db.add(coupon)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError(f"Coupon code {code} already exists") from e
    db.refresh(coupon)

    logger.info(f"Coupon created: {coupon.code} ({coupon.type} {coupon.value})")
    return coupon


def cancel_coupon(db: Session, coupon_id: int) -> DBCoupon:
    coupon = db.get(DBCoupon, coupon_id)
    if not coupon:
        raise NotFoundError(f"Coupon {coupon_id} not found")

    status = CouponStatus(coupon.status)
    if status is CouponStatus.CANCELLED:
        return coupon
    if status is CouponStatus.USED:
        raise ValidationError("A fully used coupon cannot be cancelled")

    coupon.status = CouponStatus.CANCELLED.value
    coupon.updated_at = format_db_datetime(datetime.now())
    db.commit()
    db.refresh(coupon)
    logger.info(f"Coupon cancelled: {coupon.code}")
    return coupon


def coupon_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now()
    coupons = db.query(DBCoupon).all()
    usage = db.query(DBCouponUsage).all()

    def expired(c) -> bool:
        return parse_db_datetime(c.valid_until) <= now

    return {
        "total": len(coupons),
        "active": sum(1 for c in coupons if c.status == CouponStatus.ACTIVE.value and not expired(c)),
        "used": sum(1 for c in coupons if c.status == CouponStatus.USED.value),
        "expired": sum(
            1 for c in coupons
            if c.status == CouponStatus.EXPIRED.value
            or (expired(c) and c.status != CouponStatus.USED.value)
        ),
        "cancelled": sum(1 for c in coupons if c.status == CouponStatus.CANCELLED.value),
        "total_discount": round(sum(u.discount_applied for u in usage), 2),
        "total_usage": len(usage),
    }


def _code_exists(db: Session, code: str) -> bool:
    return db.query(DBCoupon.id).filter(func.upper(DBCoupon.code) == code).first() is not None
