# backend/app/schemas/bookings.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator, model_validator

from ..models.enums import BookingStatus, PaymentStatus


def naive_local(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive local time."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class BookingCreate(BaseModel):
    service_id: int
    therapist_id: int
    date_start: datetime

    client_id: Optional[int] = None
    client_email: Optional[str] = None
    client_name: Optional[str] = None
    client_phone: Optional[str] = None

    notes: Optional[str] = None
    coupon_code: Optional[str] = None
    payment_proof: Optional[str] = None

    @field_validator("date_start")
    @classmethod
    def strip_timezone(cls, v: datetime) -> datetime:
        return naive_local(v)

    @model_validator(mode="after")
    def client_required(self):
        if self.client_id is None and not self.client_email:
            raise ValueError("client_id or client_email is required")
        return self

    model_config = {"from_attributes": True}


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    therapist_id: Optional[int] = None

    model_config = {"from_attributes": True}


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_date: datetime
    reason: Optional[str] = None

    @field_validator("new_date")
    @classmethod
    def strip_timezone(cls, v: datetime) -> datetime:
        return naive_local(v)


class RescheduleResolve(BaseModel):
    approve: bool
    response_message: Optional[str] = None


class BookingRead(BaseModel):
    id: int

    client_id: int
    service_id: int
    therapist_id: int

    date_start: datetime

    status: BookingStatus
    payment_status: PaymentStatus
    final_price: Optional[float] = None
    discount_amount: float = 0
    coupon_id: Optional[int] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None

    reschedule_new_date: Optional[datetime] = None
    reschedule_reason: Optional[str] = None
    reschedule_requested_at: Optional[datetime] = None
    reschedule_response: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
