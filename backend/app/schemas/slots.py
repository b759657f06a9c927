"""
Pydantic schemas for slots API.
"""

from datetime import date
from pydantic import BaseModel, Field


class SlotInfo(BaseModel):
    """Information about a single slot."""
    time: str  # "HH:MM"
    available: bool
    reason: str | None = None
    occupied_by: int | None = Field(None, description="Therapist whose booking blocks the slot")

    model_config = {"from_attributes": True}


class SlotsDayResponse(BaseModel):
    """All generated slots of one therapist for one day."""
    therapist_id: int
    date: date
    service_duration_min: int
    day_available: bool
    reason: str | None = None
    slots: list[SlotInfo]

    model_config = {"from_attributes": True}
