# backend/app/services/slots/rules.py
"""
Working-hours resolution for one therapist and one calendar date.

Merges:
✓ weekly template (working_days + working hours)
✓ break windows
✓ custom_schedule overrides for a specific date

Blocked dates are NOT applied here: they disable the whole date and are
checked by the caller through day_block_reason().
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime

from .config import time_str_to_minutes

# Weekday indices follow the booking front-end: 0 = Sunday ... 6 = Saturday
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass(frozen=True)
class TimeWindow:
    """Half-open [start, end) in minutes since midnight."""
    start: int
    end: int


@dataclass(frozen=True)
class CustomDay:
    date: date
    available: bool
    custom_hours: TimeWindow | None = None


@dataclass(frozen=True)
class AvailabilityRules:
    """Therapist availability in a form the slot engine can work with."""
    working_days: frozenset[int]
    working_hours: TimeWindow
    breaks: tuple[TimeWindow, ...] = ()
    blocked_dates: frozenset[date] = frozenset()
    custom_schedule: tuple[CustomDay, ...] = ()
    buffer_minutes: int = 0
    min_advance_hours: int = 2
    max_advance_days: int = 60


@dataclass(frozen=True)
class WorkingWindow:
    """Effective working hours for one date plus the breaks to apply."""
    start: int
    end: int
    breaks: tuple[TimeWindow, ...] = field(default_factory=tuple)


def sunday_based_weekday(target_date: date) -> int:
    """Python weekday (0 = Monday) → 0 = Sunday indexing."""
    return (target_date.weekday() + 1) % 7


def resolve_working_window(
    target_date: date,
    rules: AvailabilityRules,
) -> WorkingWindow | None:
    """
    Effective working window for target_date, or None when unavailable.

    Unavailable = weekday not worked, or a custom_schedule entry for the
    date marks it unavailable.
    """
    if sunday_based_weekday(target_date) not in rules.working_days:
        return None

    custom = find_custom_day(target_date, rules)
    if custom is not None:
        if not custom.available:
            return None
        if custom.custom_hours is not None:
            hours = custom.custom_hours
            return WorkingWindow(hours.start, hours.end, rules.breaks)

    hours = rules.working_hours
    return WorkingWindow(hours.start, hours.end, rules.breaks)


def find_custom_day(target_date: date, rules: AvailabilityRules) -> CustomDay | None:
    """First custom_schedule entry for the same calendar date."""
    for custom in rules.custom_schedule:
        if custom.date == target_date:
            return custom
    return None


def day_block_reason(target_date: date, rules: AvailabilityRules) -> str | None:
    """Day-level reason why nothing can be booked on target_date."""
    if target_date in rules.blocked_dates:
        return "Date is blocked"
    if sunday_based_weekday(target_date) not in rules.working_days:
        return f"Therapist does not work on {WEEKDAY_NAMES[sunday_based_weekday(target_date)]}"
    custom = find_custom_day(target_date, rules)
    if custom is not None and not custom.available:
        return "Therapist is unavailable on this date"
    return None


# ── Parsing from storage ─────────────────────────────────────────────────


def rules_from_record(record) -> AvailabilityRules:
    """
    Build AvailabilityRules from a TherapistAvailability row.

    JSON columns:
        working_days:    [1, 2, 3, 4, 5]
        breaks:          [{"start": "13:00", "end": "14:00"}]
        blocked_dates:   ["2026-12-25"]
        custom_schedule: [{"date": "2026-12-24", "available": true,
                           "custom_hours": {"start": "09:00", "end": "13:00"}}]
    """
    custom_days = []
    for entry in _load_json(record.custom_schedule, []):
        hours = entry.get("custom_hours") or entry.get("customHours")
        custom_days.append(CustomDay(
            date=_parse_date(entry["date"]),
            available=entry.get("available", True) is not False,
            custom_hours=_window(hours) if hours else None,
        ))

    return AvailabilityRules(
        working_days=frozenset(int(d) for d in _load_json(record.working_days, [])),
        working_hours=TimeWindow(
            time_str_to_minutes(record.work_start),
            time_str_to_minutes(record.work_end),
        ),
        breaks=tuple(
            sorted((_window(b) for b in _load_json(record.breaks, [])), key=lambda w: w.start)
        ),
        blocked_dates=frozenset(_parse_date(d) for d in _load_json(record.blocked_dates, [])),
        custom_schedule=tuple(custom_days),
        buffer_minutes=record.buffer_minutes or 0,
        min_advance_hours=record.min_advance_hours if record.min_advance_hours is not None else 2,
        max_advance_days=record.max_advance_days if record.max_advance_days is not None else 60,
    )


def _load_json(raw: str | None, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


def _window(data: dict) -> TimeWindow:
    return TimeWindow(time_str_to_minutes(data["start"]), time_str_to_minutes(data["end"]))


def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Accepts "YYYY-MM-DD" as well as full ISO timestamps
    return datetime.fromisoformat(str(value).replace("Z", "")).date()
