# backend/app/routers/services.py
# Therapy services catalogue. DELETE = soft-delete (is_active), so existing
# bookings keep their service and its duration.

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import Services as DBServices
from ..schemas.services import (
    ServiceCreate,
    ServiceUpdate,
    ServiceRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["services"])


def _get_or_404(db: Session, id: int) -> DBServices:
    obj = db.get(DBServices, id)
    if not obj:
        raise HTTPException(status_code=404, detail="Service not found")
    return obj


@router.get("/", response_model=list[ServiceRead])
def list_services(
    category: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
):
    query = db.query(DBServices)
    if not include_inactive:
        query = query.filter(DBServices.is_active == 1)
    if category:
        query = query.filter(DBServices.category == category)
    return query.order_by(DBServices.name).all()


@router.get("/{id}", response_model=ServiceRead)
def get_service(id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, id)


@router.post("/", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceCreate,
    db: Session = Depends(get_db),
):
    values = data.model_dump()
    values["requires_payment"] = int(values["requires_payment"])
    obj = DBServices(**values)
    db.add(obj)
    db.commit()
    db.refresh(obj)
    logger.info(f"Service {obj.id} created: {obj.name} ({obj.duration_min} min, {obj.price})")
    return obj


@router.patch("/{id}", response_model=ServiceRead)
def update_service(
    id: int,
    data: ServiceUpdate,
    db: Session = Depends(get_db),
):
    obj = _get_or_404(db, id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(obj, field, int(value) if isinstance(value, bool) else value)

    db.commit()
    db.refresh(obj)
    return obj


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(id: int, db: Session = Depends(get_db)):
    obj = _get_or_404(db, id)
    obj.is_active = 0
    db.commit()
    logger.info(f"Service {id} deactivated")
