# backend/app/services/slots/calculator.py
"""
Level 1: Slot generation for one effective working window.

Produces an ordered list of candidate slots:
  start, start + step, ... while slot start < window end

A slot is pre-marked unavailable when the service started there would
overlap a break window.

Contains:
✓ effective working hours (already resolved by rules.py)
✓ break windows

Does NOT contain:
✗ Bookings (checked at Level 2)
✗ Advance notice / horizon policy (checked at Level 2)
"""

from dataclasses import dataclass

from .config import BookingConfig, get_booking_config, minutes_to_time_str
from .rules import WorkingWindow

BREAK_REASON = "Break"
OVERRUN_REASON = "Exceeds working hours"


@dataclass
class Slot:
    """Candidate start time; start is in minutes since midnight."""
    start: int
    available: bool = True
    reason: str | None = None
    occupied_by: int | None = None

    @property
    def time(self) -> str:
        return minutes_to_time_str(self.start)

    def block(self, reason: str, occupied_by: int | None = None) -> None:
        self.available = False
        self.reason = reason
        self.occupied_by = occupied_by

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "available": self.available,
            "reason": self.reason,
            "occupied_by": self.occupied_by,
        }


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval overlap: touching intervals do not overlap."""
    return start_a < end_b and end_a > start_b


def generate_slots(
    window: WorkingWindow,
    duration_min: int,
    config: BookingConfig | None = None,
) -> list[Slot]:
    """
    Expand a working window into fixed-cadence slots.

    The last slot starts at the largest step offset strictly before
    window.end. Slots whose service would run past window.end are kept
    (available unless config.allow_overrun is False).
    """
    config = config or get_booking_config()
    step = config.slot_step_minutes
    slots: list[Slot] = []

    t = window.start
    while t < window.end:
        slot = Slot(start=t)
        slot_end = t + duration_min

        for brk in window.breaks:
            if overlaps(t, slot_end, brk.start, brk.end):
                slot.block(BREAK_REASON)
                break

        if slot.available and not config.allow_overrun and slot_end > window.end:
            slot.block(OVERRUN_REASON)

        slots.append(slot)
        t += step

    return slots
