import json
import os
from dataclasses import dataclass
from datetime import date, datetime

# Settings are read at import time; keep tests away from real services.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["REDIS_URL"] = ""
os.environ["REMINDER_CHECKER_ENABLED"] = "false"

import pytest
from sqlalchemy.orm import sessionmaker

from backend.app.database import build_engine
from backend.app.models.generated import (
    Base,
    Clients,
    Services,
    TherapistAvailability,
    Therapists,
)
from backend.app.services.locks import LockManager

# Friday morning; MONDAY is the next working day
NOW = datetime(2026, 2, 27, 9, 0)
MONDAY = date(2026, 3, 2)


@dataclass
class Seed:
    therapist_id: int
    other_therapist_id: int
    service_60: int
    service_90: int
    paid_service: int
    client_id: int
    other_client_id: int


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def locks():
    return LockManager(redis=None, timeout=5)


@pytest.fixture
def events(monkeypatch):
    """Captured notifications as (event_type, payload) tuples."""
    captured = []

    def fake_emit(event_type, payload):
        captured.append((event_type, payload))

    from backend.app.services import booking_lifecycle, booking_payment, reminder_checker

    monkeypatch.setattr(booking_lifecycle, "emit_event", fake_emit)
    monkeypatch.setattr(booking_payment, "emit_event", fake_emit)
    monkeypatch.setattr(reminder_checker, "emit_event", fake_emit)
    return captured


def add_availability(db, therapist_id, **overrides):
    values = {
        "working_days": json.dumps([1, 2, 3, 4, 5]),
        "work_start": "09:00",
        "work_end": "18:00",
        "breaks": json.dumps([{"start": "13:00", "end": "14:00"}]),
        "blocked_dates": json.dumps([]),
        "custom_schedule": json.dumps([]),
        "buffer_minutes": 0,
        "min_advance_hours": 2,
        "max_advance_days": 60,
    }
    values.update(overrides)
    record = TherapistAvailability(therapist_id=therapist_id, **values)
    db.add(record)
    db.commit()
    return record


@pytest.fixture
def seed(db):
    therapist = Therapists(name="Anna Berg")
    other = Therapists(name="Jonas Held")
    service_60 = Services(name="Session", duration_min=60, price=100.0, requires_payment=0)
    service_90 = Services(name="Long session", duration_min=90, price=150.0, requires_payment=0)
    paid = Services(name="Couples session", duration_min=60, price=120.0, requires_payment=1)
    client = Clients(name="Mia Roth", email="mia@example.com")
    other_client = Clients(name="Leo Vogt", email="leo@example.com")
    db.add_all([therapist, other, service_60, service_90, paid, client, other_client])
    db.commit()

    add_availability(db, therapist.id)
    add_availability(db, other.id)

    return Seed(
        therapist_id=therapist.id,
        other_therapist_id=other.id,
        service_60=service_60.id,
        service_90=service_90.id,
        paid_service=paid.id,
        client_id=client.id,
        other_client_id=other_client.id,
    )
