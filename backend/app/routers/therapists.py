# backend/app/routers/therapists.py
# - PATCH = ALLOWED
# - DELETE = soft-delete (is_active)
# - Availability rules: GET / PUT /therapists/{id}/availability

import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import (
    TherapistAvailability as DBAvailability,
    Therapists as DBTherapists,
)
from ..schemas.therapists import (
    AvailabilityRead,
    AvailabilityUpdate,
    TherapistCreate,
    TherapistRead,
    TherapistUpdate,
)
from ..services.slots.config import format_db_datetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/therapists", tags=["therapists"])


# ---------------------------------------------------------------------
# Base CRUD
# ---------------------------------------------------------------------

@router.get("/", response_model=list[TherapistRead])
def list_therapists(db: Session = Depends(get_db)):
    return (
        db.query(DBTherapists)
        .filter(DBTherapists.is_active == 1)
        .order_by(DBTherapists.name)
        .all()
    )


@router.get("/{id}", response_model=TherapistRead)
def get_therapist(id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, id)


@router.post("/", response_model=TherapistRead, status_code=status.HTTP_201_CREATED)
def create_therapist(
    data: TherapistCreate,
    db: Session = Depends(get_db),
):
    obj = DBTherapists(**data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.patch("/{id}", response_model=TherapistRead)
def update_therapist(
    id: int,
    data: TherapistUpdate,
    db: Session = Depends(get_db),
):
    obj = _get_or_404(db, id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(obj, field, int(value) if isinstance(value, bool) else value)

    db.commit()
    db.refresh(obj)
    return obj


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_therapist(id: int, db: Session = Depends(get_db)):
    obj = _get_or_404(db, id)
    obj.is_active = 0
    db.commit()


# ---------------------------------------------------------------------
# Availability rules
# ---------------------------------------------------------------------

@router.get("/{id}/availability", response_model=AvailabilityRead)
def get_availability(id: int, db: Session = Depends(get_db)):
    _get_or_404(db, id)
    record = _availability_record(db, id)
    if record is None:
        raise HTTPException(status_code=404, detail="Availability not configured")
    return _to_read(record)


@router.put("/{id}/availability", response_model=AvailabilityRead)
def put_availability(
    id: int,
    data: AvailabilityUpdate,
    db: Session = Depends(get_db),
):
    """Replace the therapist's availability rules."""
    _get_or_404(db, id)

    record = _availability_record(db, id)
    if record is None:
        record = DBAvailability(therapist_id=id)
        db.add(record)

    record.working_days = json.dumps(data.working_days)
    record.work_start = data.working_hours.start
    record.work_end = data.working_hours.end
    record.breaks = json.dumps([b.model_dump() for b in data.breaks])
    record.blocked_dates = json.dumps([d.isoformat() for d in data.blocked_dates])
    record.custom_schedule = json.dumps([
        {
            "date": c.date.isoformat(),
            "available": c.available,
            "custom_hours": c.custom_hours.model_dump() if c.custom_hours else None,
        }
        for c in data.custom_schedule
    ])
    record.buffer_minutes = data.buffer_minutes
    record.min_advance_hours = data.min_advance_hours
    record.max_advance_days = data.max_advance_days
    record.updated_at = format_db_datetime(datetime.now())

    db.commit()
    db.refresh(record)
    logger.info(f"Availability updated for therapist {id}")
    return _to_read(record)


def _get_or_404(db: Session, id: int) -> DBTherapists:
    obj = db.get(DBTherapists, id)
    if not obj:
        raise HTTPException(status_code=404, detail="Therapist not found")
    return obj


def _availability_record(db: Session, therapist_id: int) -> DBAvailability | None:
    return (
        db.query(DBAvailability)
        .filter(DBAvailability.therapist_id == therapist_id)
        .first()
    )


def _to_read(record: DBAvailability) -> AvailabilityRead:
    return AvailabilityRead(
        therapist_id=record.therapist_id,
        working_days=json.loads(record.working_days or "[]"),
        working_hours={"start": record.work_start, "end": record.work_end},
        breaks=json.loads(record.breaks or "[]"),
        blocked_dates=json.loads(record.blocked_dates or "[]"),
        custom_schedule=json.loads(record.custom_schedule or "[]"),
        buffer_minutes=record.buffer_minutes,
        min_advance_hours=record.min_advance_hours,
        max_advance_days=record.max_advance_days,
    )
