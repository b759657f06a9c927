# backend/app/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache


DB_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        slot_step_minutes: Cadence of candidate slot starts (15/30/60)
        default_min_advance_hours: Minimum notice when a therapist has none set
        default_max_advance_days: Booking horizon when a therapist has none set
        default_service_duration: Duration used for a booking whose service is unknown
        allow_overrun: Keep slots whose service would end after closing time
            available (True) or mark them "Exceeds working hours" (False)
    """
    slot_step_minutes: int = 30  # 15 / 30 / 60
    default_min_advance_hours: int = 2
    default_max_advance_days: int = 60
    default_service_duration: int = 60
    allow_overrun: bool = True

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in (15, 30, 60):
            raise ValueError(f"slot_step_minutes must be 15, 30, or 60, got {self.slot_step_minutes}")


@lru_cache
def get_booking_config() -> BookingConfig:
    """Get booking configuration (singleton)."""
    return BookingConfig()


def time_str_to_minutes(value: str) -> int:
    """"HH:MM" → minutes since midnight."""
    hour, minute = value.strip().split(":")[:2]
    return int(hour) * 60 + int(minute)


def minutes_to_time_str(minutes: int) -> str:
    """Minutes since midnight → "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_db_datetime(value: str | datetime) -> datetime:
    """Parse a stored timestamp ("YYYY-MM-DD HH:MM:SS" or ISO)."""
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", ""))


def format_db_datetime(value: datetime) -> str:
    return value.strftime(DB_DATETIME_FORMAT)
