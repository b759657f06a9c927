# backend/app/schemas/coupons.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from ..models.enums import CouponStatus, CouponType
from .bookings import naive_local


class CouponCreate(BaseModel):
    type: CouponType
    value: float = Field(gt=0)
    valid_until: datetime
    usage_limit: int = Field(1, ge=1)
    service_id: Optional[int] = None
    client_id: Optional[int] = None
    description: Optional[str] = None
    created_by: Optional[str] = None
    code: Optional[str] = Field(None, description="Generated as XXXX-XXXX when omitted")

    @field_validator("valid_until")
    @classmethod
    def strip_timezone(cls, v: datetime) -> datetime:
        return naive_local(v)

    model_config = {"from_attributes": True}


class CouponRead(BaseModel):
    id: int
    code: str
    type: CouponType
    value: float
    service_id: Optional[int] = None
    client_id: Optional[int] = None
    valid_from: datetime
    valid_until: datetime
    usage_limit: int
    used_count: int
    status: CouponStatus
    description: Optional[str] = None
    created_by: Optional[str] = None

    model_config = {"from_attributes": True}


class CouponValidateRequest(BaseModel):
    code: str
    service_id: Optional[int] = None
    client_email: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0, description="Charge to discount; defaults to the service price")


class CouponValidateResponse(BaseModel):
    valid: bool = True
    coupon_id: int
    code: str
    type: CouponType
    value: float
    charge_amount: Optional[float] = None
    discount_amount: Optional[float] = None
    final_amount: Optional[float] = None


class CouponRedeemRequest(BaseModel):
    booking_id: int
    client_id: int
    discount_applied: float = Field(ge=0)


class CouponUsageRead(BaseModel):
    id: int
    coupon_id: int
    booking_id: int
    used_by: int
    discount_applied: float
    used_at: datetime

    model_config = {"from_attributes": True}


class CouponStats(BaseModel):
    total: int
    active: int
    used: int
    expired: int
    cancelled: int
    total_discount: float
    total_usage: int
