# backend/app/routers/bookings.py
# PATCH = status / therapist only, DELETE = 405 (use /cancel)

from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.enums import BookingStatus
from ..models.generated import Bookings as DBBookings
from ..schemas.bookings import (
    BookingCancel,
    BookingCreate,
    BookingRead,
    BookingUpdate,
    RescheduleRequest,
    RescheduleResolve,
)
from ..services import booking_lifecycle

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/", response_model=list[BookingRead])
def list_bookings(
    therapist_id: Optional[int] = None,
    client_id: Optional[int] = None,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
):
    query = db.query(DBBookings)
    if therapist_id is not None:
        query = query.filter(DBBookings.therapist_id == therapist_id)
    if client_id is not None:
        query = query.filter(DBBookings.client_id == client_id)
    if booking_status is not None:
        query = query.filter(DBBookings.status == booking_status.value)
    # text datetimes compare chronologically
    if date_from is not None:
        query = query.filter(DBBookings.date_start >= date_from.isoformat())
    if date_to is not None:
        query = query.filter(DBBookings.date_start < (date_to + timedelta(days=1)).isoformat())
    return query.order_by(DBBookings.date_start).all()


@router.get("/{id}", response_model=BookingRead)
def get_booking(id: int, db: Session = Depends(get_db)):
    return booking_lifecycle.get_booking(db, id)


@router.post("/", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
):
    request = booking_lifecycle.BookingRequest(
        service_id=data.service_id,
        therapist_id=data.therapist_id,
        start=data.date_start,
        client_id=data.client_id,
        client_email=data.client_email,
        client_name=data.client_name,
        client_phone=data.client_phone,
        notes=data.notes,
        coupon_code=data.coupon_code,
        payment_proof=data.payment_proof,
    )
    return booking_lifecycle.commit_booking(db, request)


@router.patch("/{id}", response_model=BookingRead)
def update_booking(
    id: int,
    data: BookingUpdate,
    db: Session = Depends(get_db),
):
    return booking_lifecycle.update_booking(
        db, id, status=data.status, therapist_id=data.therapist_id
    )


@router.post("/{id}/cancel", response_model=BookingRead)
def cancel_booking(
    id: int,
    data: BookingCancel,
    db: Session = Depends(get_db),
):
    return booking_lifecycle.cancel_booking(db, id, reason=data.reason)


@router.post("/{id}/reschedule", response_model=BookingRead)
def request_reschedule(
    id: int,
    data: RescheduleRequest,
    db: Session = Depends(get_db),
):
    return booking_lifecycle.request_reschedule(db, id, data.new_date, reason=data.reason)


@router.post("/{id}/reschedule/resolve", response_model=BookingRead)
def resolve_reschedule(
    id: int,
    data: RescheduleResolve,
    db: Session = Depends(get_db),
):
    return booking_lifecycle.resolve_reschedule(
        db, id, approve=data.approve, response=data.response_message
    )


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
