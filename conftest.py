"""Shared fixtures: a file-backed SQLite database per test plus seed helpers."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

# config.get_settings() runs at import of db.session and api_server.
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'bootstrap.db'}")
os.environ.setdefault("BOOKING_API_KEY", "test-booking-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from booking.models import Booking, Organization, Resource, Unavailability  # noqa: E402
from db.session import build_engine, build_session_factory, init_db  # noqa: E402


def at(hour: int, minute: int = 0, day: int = 6) -> datetime:
    """An instant on 2025-01-<day> in UTC."""
    return datetime(2025, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def org(db_factory) -> str:
    with db_factory() as db, db.begin():
        organization = Organization(id="org-1", name="Acme")
        db.add(organization)
    return "org-1"


@pytest.fixture
def other_org(db_factory) -> str:
    with db_factory() as db, db.begin():
        db.add(Organization(id="org-2", name="Globex"))
    return "org-2"


@pytest.fixture
def make_resource(db_factory, org):
    counter = {"n": 0}

    def _make(capacity=None, *, organization_id=None, timezone_name="UTC") -> str:
        counter["n"] += 1
        resource_id = f"res-{counter['n']}"
        with db_factory() as db, db.begin():
            db.add(
                Resource(
                    id=resource_id,
                    organization_id=organization_id or org,
                    name=f"Room {counter['n']}",
                    timezone=timezone_name,
                    capacity=capacity,
                )
            )
        return resource_id

    return _make


@pytest.fixture
def add_booking(db_factory):
    def _add(resource_id: str, start: datetime, end: datetime, *, booking_id=None, status="confirmed") -> str:
        with db_factory() as db, db.begin():
            booking = Booking(resource_id=resource_id, status=status, start_time=start, end_time=end, details={})
            if booking_id:
                booking.id = booking_id
            db.add(booking)
            db.flush()
            return booking.id

    return _add


@pytest.fixture
def add_unavailability(db_factory, org):
    def _add(resource_id: str, start: datetime, end: datetime, *, unavailability_id=None) -> str:
        with db_factory() as db, db.begin():
            unavailability = Unavailability(
                resource_id=resource_id,
                organization_id=org,
                start_time=start,
                end_time=end,
            )
            if unavailability_id:
                unavailability.id = unavailability_id
            db.add(unavailability)
            db.flush()
            return unavailability.id

    return _add
