# backend/app/routers/slots.py
"""
Slots API endpoints.

GET /slots/day - All slots of a therapist for a day, with the reason each
                 unavailable slot cannot be booked.
"""

from datetime import date
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import Services as DBServices
from ..schemas.slots import SlotsDayResponse
from ..services.slots import calculate_therapist_availability, get_booking_config


router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("/day", response_model=SlotsDayResponse)
def get_slots_day(
    therapist_id: int,
    target_date: date = Query(..., alias="date"),
    duration_minutes: int | None = Query(None, gt=0, le=24 * 60),
    service_id: int | None = None,
    client_email: str | None = None,
    db: Session = Depends(get_db),
):
    """Slots for a therapist and day; duration from the service unless given."""
    if duration_minutes is None and service_id is None:
        raise HTTPException(status_code=400, detail="duration_minutes or service_id required")

    if duration_minutes is None:
        service = db.get(DBServices, service_id)
        if not service:
            raise HTTPException(status_code=404, detail="Service not found")
        duration_minutes = service.duration_min

    availability = calculate_therapist_availability(
        db,
        therapist_id,
        target_date,
        duration_minutes,
        client_email=client_email,
        config=get_booking_config(),
    )
    return availability.to_dict()
