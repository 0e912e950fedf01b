# tests/conftest.py
"""Shared fixtures: a throwaway SQLite database per test, seeded with trackers and zones."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite://")

import time
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.database import create_tables
from app.models.tracker import Tracker
from app.models.zone import Zone
from tests.helpers import Z1, Z2


@pytest.fixture
def base_ts():
    """An epoch timestamp one hour ago, comfortably inside the accepted window."""
    return int(time.time()) - 3600


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}",
                           connect_args={"check_same_thread": False})
    create_tables(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    """Trackers T1, T2 (active) and T9 (inactive); zones Z1 and Z2."""
    db = session_factory()
    db.add_all([
        Tracker(tracker_id="T1", display_name="Roberto", active=True, notification_target="1001"),
        Tracker(tracker_id="T2", display_name="Ana", active=True),
        Tracker(tracker_id="T9", display_name="Former", active=False),
    ])
    for z in (Z1, Z2):
        db.add(Zone(code=z.code, name=z.name, latitude=z.latitude, longitude=z.longitude,
                    radius_m=z.radius_m, active=True, group_name=z.group_name))
    db.commit()
    db.close()
    return session_factory
