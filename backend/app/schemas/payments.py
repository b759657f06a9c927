# backend/app/schemas/payments.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..models.enums import PaymentOutcome, PaymentRecordStatus


class PaymentResultRequest(BaseModel):
    """Provider callback: transaction id (or booking id) and outcome."""
    reference: str = Field(min_length=1)
    status: PaymentOutcome
    amount: Optional[float] = Field(None, ge=0)


class PaymentRead(BaseModel):
    id: int
    transaction_id: str
    booking_id: Optional[int] = None
    amount: Optional[float] = None
    method: Optional[str] = None
    status: PaymentRecordStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentResultResponse(BaseModel):
    applied: bool
    payment: PaymentRead
