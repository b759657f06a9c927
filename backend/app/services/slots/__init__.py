# backend/app/services/slots/__init__.py
"""
Slots calculation module.

Rules:   effective working window for a therapist and date
Level 1: Fixed-cadence slots with break filtering
Level 2: Policy + booking conflicts (therapist and client)
"""

from .config import BookingConfig, get_booking_config
from .rules import AvailabilityRules, WorkingWindow, resolve_working_window
from .calculator import Slot, generate_slots
from .availability import calculate_therapist_availability, check_conflicts

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "AvailabilityRules",
    "WorkingWindow",
    "resolve_working_window",
    "Slot",
    "generate_slots",
    "calculate_therapist_availability",
    "check_conflicts",
]
