# backend/app/schemas/therapists.py

import re
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _minutes(value: str) -> int:
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)


class TherapistCreate(BaseModel):
    name: str
    email: Optional[str] = None
    bio: Optional[str] = None

    model_config = {"from_attributes": True}


class TherapistUpdate(BaseModel):
    is_active: Optional[bool] = None
    name: Optional[str] = None
    email: Optional[str] = None
    bio: Optional[str] = None

    model_config = {"from_attributes": True}


class TherapistRead(BaseModel):
    id: int
    name: str
    email: Optional[str] = None
    bio: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}


# ── Availability rules ───────────────────────────────────────────────────


class TimeWindowSchema(BaseModel):
    start: str = Field(description="HH:MM")
    end: str = Field(description="HH:MM")

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, v: str) -> str:
        """Validate time format."""
        if not TIME_RE.match(v):
            raise ValueError("Time must be in HH:MM format")
        return v

    @model_validator(mode="after")
    def start_before_end(self):
        if _minutes(self.start) >= _minutes(self.end):
            raise ValueError(f"Start {self.start} must be before end {self.end}")
        return self


class CustomDaySchema(BaseModel):
    date: date
    available: bool = True
    custom_hours: Optional[TimeWindowSchema] = None


class AvailabilityUpdate(BaseModel):
    """
    Weekly template plus date overrides.

    working_days use 0 = Sunday ... 6 = Saturday.
    """
    working_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    working_hours: TimeWindowSchema = Field(
        default_factory=lambda: TimeWindowSchema(start="09:00", end="18:00")
    )
    breaks: list[TimeWindowSchema] = Field(default_factory=list)
    blocked_dates: list[date] = Field(default_factory=list)
    custom_schedule: list[CustomDaySchema] = Field(default_factory=list)
    buffer_minutes: int = Field(0, ge=0, le=240)
    min_advance_hours: int = Field(2, ge=0)
    max_advance_days: int = Field(60, ge=1)

    @field_validator("working_days")
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("working_days must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def breaks_inside_hours(self):
        day_start = _minutes(self.working_hours.start)
        day_end = _minutes(self.working_hours.end)

        ordered = sorted(self.breaks, key=lambda b: _minutes(b.start))
        for b in ordered:
            if _minutes(b.start) < day_start or _minutes(b.end) > day_end:
                raise ValueError(f"Break {b.start}-{b.end} is outside working hours")
        for prev, nxt in zip(ordered, ordered[1:]):
            if _minutes(nxt.start) < _minutes(prev.end):
                raise ValueError(f"Breaks {prev.start}-{prev.end} and {nxt.start}-{nxt.end} overlap")

        seen = set()
        for custom in self.custom_schedule:
            if custom.date in seen:
                raise ValueError(f"Duplicate custom schedule entry for {custom.date}")
            seen.add(custom.date)
        return self


class AvailabilityRead(AvailabilityUpdate):
    therapist_id: int
