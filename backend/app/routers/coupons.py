# backend/app/routers/coupons.py

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.enums import CouponStatus
from ..models.generated import Coupons as DBCoupons, CouponUsage as DBCouponUsage
from ..schemas.coupons import (
    CouponCreate,
    CouponRead,
    CouponRedeemRequest,
    CouponStats,
    CouponUsageRead,
    CouponValidateRequest,
    CouponValidateResponse,
)
from ..services import coupon_ledger

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.get("/", response_model=list[CouponRead])
def list_coupons(
    coupon_status: Optional[CouponStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    query = db.query(DBCoupons)
    if coupon_status is not None:
        query = query.filter(DBCoupons.status == coupon_status.value)
    return query.order_by(DBCoupons.id.desc()).all()


@router.get("/stats", response_model=CouponStats)
def get_coupon_stats(db: Session = Depends(get_db)):
    return coupon_ledger.coupon_stats(db)


@router.get("/{id}", response_model=CouponRead)
def get_coupon(id: int, db: Session = Depends(get_db)):
    obj = db.get(DBCoupons, id)
    if not obj:
        raise HTTPException(status_code=404, detail="Not found")
    return obj


@router.post("/", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(
    data: CouponCreate,
    db: Session = Depends(get_db),
):
    return coupon_ledger.create_coupon(
        db,
        coupon_type=data.type,
        value=data.value,
        valid_until=data.valid_until,
        usage_limit=data.usage_limit,
        service_id=data.service_id,
        client_id=data.client_id,
        description=data.description,
        created_by=data.created_by,
        code=data.code,
    )


@router.post("/validate", response_model=CouponValidateResponse)
def validate_coupon(
    data: CouponValidateRequest,
    db: Session = Depends(get_db),
):
    result = coupon_ledger.validate_coupon(
        db,
        data.code,
        service_id=data.service_id,
        client_email=data.client_email,
        charge_amount=data.amount,
    )
    final_amount = None
    if result.charge_amount is not None and result.discount_amount is not None:
        final_amount = round(result.charge_amount - result.discount_amount, 2)

    return CouponValidateResponse(
        coupon_id=result.coupon.id,
        code=result.coupon.code,
        type=result.coupon.type,
        value=result.coupon.value,
        charge_amount=result.charge_amount,
        discount_amount=result.discount_amount,
        final_amount=final_amount,
    )


@router.post("/{id}/redeem", response_model=CouponUsageRead, status_code=status.HTTP_201_CREATED)
def redeem_coupon(
    id: int,
    data: CouponRedeemRequest,
    db: Session = Depends(get_db),
):
    return coupon_ledger.redeem_coupon(
        db, id, data.booking_id, data.client_id, data.discount_applied
    )


@router.post("/{id}/cancel", response_model=CouponRead)
def cancel_coupon(id: int, db: Session = Depends(get_db)):
    return coupon_ledger.cancel_coupon(db, id)


@router.get("/{id}/usage", response_model=list[CouponUsageRead])
def list_coupon_usage(id: int, db: Session = Depends(get_db)):
    if not db.get(DBCoupons, id):
        raise HTTPException(status_code=404, detail="Not found")
    return (
        db.query(DBCouponUsage)
        .filter(DBCouponUsage.coupon_id == id)
        .order_by(DBCouponUsage.used_at)
        .all()
    )
