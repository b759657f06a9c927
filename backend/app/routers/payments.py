# backend/app/routers/payments.py
"""
Payment provider signals.

POST /payments/result is safe to call repeatedly with the same body:
only the first delivery changes anything.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import Payments as DBPayments
from ..schemas.payments import PaymentRead, PaymentResultRequest, PaymentResultResponse
from ..services.booking_payment import on_payment_result

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/result", response_model=PaymentResultResponse)
def payment_result(
    data: PaymentResultRequest,
    db: Session = Depends(get_db),
):
    result = on_payment_result(db, data.reference, data.status, amount=data.amount)
    return PaymentResultResponse(
        applied=result.applied,
        payment=PaymentRead.model_validate(result.payment),
    )


@router.get("/", response_model=list[PaymentRead])
def list_payments(
    booking_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    query = db.query(DBPayments)
    if booking_id is not None:
        query = query.filter(DBPayments.booking_id == booking_id)
    return query.order_by(DBPayments.id).all()
