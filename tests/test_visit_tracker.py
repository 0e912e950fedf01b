# tests/test_visit_tracker.py
"""Visit lifecycle tests against a real (SQLite) session."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import time
from datetime import datetime, timedelta
from types import SimpleNamespace
import pytest
from sqlalchemy.exc import IntegrityError
from app.models.geofence_event import GeofenceEvent, DeliveryStatus, EventType
from app.models.tracker import Tracker
from app.models.visit import Visit
from app.services.event_emitter import Transition, emit
from app.services.geofence_matcher import match
from app.services.ingestion_gateway import AcceptedPing, LocationPing
from app.services.visit_tracker import (
    apply_membership, classify_visit, close_stale_visits, close_visit,
    deactivate_tracker, heal_duplicate_open_visits, open_visits_for,
)
from tests.helpers import Z1, Z2, make_config, ping_payload

ZONES = (Z1, Z2)
CONFIG = make_config(min_visit_minutes=5)


def step(db, meters, ts, tracker="T1"):
    """Run one ping through matcher + tracker + emitter and commit, like the processor does."""
    ping = LocationPing.from_payload(ping_payload(meters, ts, tracker=tracker))
    accepted = AcceptedPing(ping=ping, tracker=SimpleNamespace(tracker_id=tracker))
    transitions = apply_membership(db, accepted, match(ping, ZONES), CONFIG, ZONES)
    events = [emit(db, t) for t in transitions]
    db.commit()
    return events


@pytest.fixture
def db(seeded):
    session = seeded()
    yield session
    session.close()


class TestClassifyVisit:
    @pytest.mark.parametrize("minutes,expected", [
        (0, "invalid"), (4.9, "invalid"), (5, "short"), (29, "short"),
        (30, "normal"), (90, "normal"), (91, "long"),
    ])
    def test_buckets(self, minutes, expected):
        assert classify_visit(int(minutes * 60), 5) == expected


class TestApplyMembership:
    def test_enter_stay_exit(self, db, base_ts):
        enter = step(db, 30, base_ts)
        assert [(e.event_type, e.zone_code) for e in enter] == [("enter", "Z1")]

        assert step(db, 50, base_ts + 600) == []

        leave = step(db, 500, base_ts + 1200)
        assert [(e.event_type, e.zone_code) for e in leave] == [("exit", "Z1")]

        visit = db.query(Visit).one()
        assert visit.duration_seconds == 1200
        assert visit.is_short is False
        assert visit.visit_type == "short"
        assert visit.close_reason == "exit"
        assert leave[0].visit_id == enter[0].visit_id == visit.id

    def test_three_inside_pings_enter_once(self, db, base_ts):
        events = [step(db, 30, base_ts + i * 60) for i in range(3)]
        assert [len(e) for e in events] == [1, 0, 0]
        assert events[0][0].event_type == "enter"
        assert db.query(GeofenceEvent).count() == 1
        assert db.query(Visit).one().is_open

    def test_inside_ping_refreshes_last_seen(self, db, base_ts):
        step(db, 30, base_ts)
        step(db, 50, base_ts + 600)
        visit = db.query(Visit).one()
        assert visit.is_open
        assert visit.last_seen_at > visit.entry_time
        assert visit.last_lat > visit.entry_lat

    def test_zone_change_exits_before_entering(self, db, base_ts):
        step(db, 30, base_ts)
        events = step(db, 2000, base_ts + 900)
        assert [(e.event_type, e.zone_code) for e in events] == [("exit", "Z1"), ("enter", "Z2")]
        assert events[0].event_time == events[1].event_time
        assert events[0].id < events[1].id

        z1 = db.query(Visit).filter(Visit.zone_code == "Z1").one()
        assert z1.close_reason == "zone_change"
        assert [v.zone_code for v in open_visits_for(db, "T1")] == ["Z2"]

    def test_short_visit_is_flagged(self, db, base_ts):
        step(db, 30, base_ts)
        events = step(db, 500, base_ts + 180)
        assert events[0].is_short_visit is True
        visit = db.query(Visit).one()
        assert visit.is_short is True
        assert visit.visit_type == "invalid"

    def test_duplicate_ping_emits_nothing(self, db, base_ts):
        assert len(step(db, 30, base_ts)) == 1
        assert step(db, 30, base_ts) == []
        assert db.query(GeofenceEvent).count() == 1

    def test_outside_everything_with_no_visit(self, db, base_ts):
        assert step(db, 500, base_ts) == []
        assert db.query(Visit).count() == 0

    def test_trackers_are_independent(self, db, base_ts):
        step(db, 30, base_ts, tracker="T1")
        step(db, 30, base_ts, tracker="T2")
        events = step(db, 500, base_ts + 60, tracker="T1")
        assert [e.tracker_id for e in events] == ["T1"]
        assert len(open_visits_for(db, "T2")) == 1

    def test_second_open_visit_violates_unique_index(self, db, base_ts):
        step(db, 30, base_ts)
        existing = db.query(Visit).one()
        db.add(Visit(tracker_id="T1", zone_code="Z1", entry_time=existing.entry_time,
                     entry_lat=1.0, entry_lng=1.0, last_seen_at=existing.entry_time))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


class TestCloseVisit:
    def test_duration_never_negative(self):
        entry = datetime(2026, 3, 4, 12, 0)
        visit = Visit(tracker_id="T1", zone_code="Z1", entry_time=entry, entry_lat=0, entry_lng=0,
                      last_seen_at=entry)
        close_visit(visit, entry - timedelta(minutes=3), 0, 0, "exit", 5)
        assert visit.exit_time == entry
        assert visit.duration_seconds == 0
        assert visit.is_short is True


class TestHealDuplicates:
    def test_keeps_newest_and_closes_older(self):
        t0 = datetime(2026, 3, 4, 12, 0)

        def visit(id_, zone, entry):
            return Visit(id=id_, tracker_id="T1", zone_code=zone, entry_time=entry,
                         entry_lat=0, entry_lng=0, last_seen_at=entry)

        old = visit(1, "Z1", t0)
        other = visit(2, "Z2", t0 + timedelta(minutes=2))
        new = visit(3, "Z1", t0 + timedelta(minutes=10))

        healthy = heal_duplicate_open_visits([old, other, new], 5)
        assert healthy == [other, new]
        assert old.exit_time == new.entry_time
        assert old.close_reason == "anomaly"
        assert old.duration_seconds == 600
        assert new.is_open


class TestSweeps:
    def test_stale_visit_closed_at_last_seen(self, db):
        five_hours_ago = int(time.time()) - 5 * 3600
        step(db, 30, five_hours_ago)
        step(db, 40, five_hours_ago + 1800)

        events = close_stale_visits(db, timedelta(hours=3), 5)
        assert [(e.event_type, e.zone_code) for e in events] == [("exit", "Z1")]
        assert events[0].delivery_status == DeliveryStatus.PENDING.value

        visit = db.query(Visit).one()
        assert visit.close_reason == "stale"
        assert visit.exit_time == visit.last_seen_at
        assert visit.duration_seconds == 1800

        assert close_stale_visits(db, timedelta(hours=3), 5) == []

    def test_ping_after_sweep_does_not_duplicate_exit(self, db):
        five_hours_ago = int(time.time()) - 5 * 3600
        step(db, 30, five_hours_ago)
        close_stale_visits(db, timedelta(hours=3), 5)

        assert step(db, 500, five_hours_ago + 3600) == []
        assert db.query(GeofenceEvent).filter(GeofenceEvent.event_type == "exit").count() == 1

    def test_racing_exit_for_same_visit_is_refused(self, db):
        five_hours_ago = int(time.time()) - 5 * 3600
        step(db, 30, five_hours_ago)
        close_stale_visits(db, timedelta(hours=3), 5)
        visit = db.query(Visit).one()

        with pytest.raises(IntegrityError):
            emit(db, Transition(event_type=EventType.EXIT, visit=visit, latitude=visit.last_lat,
                                longitude=visit.last_lng, event_time=visit.exit_time))
        db.rollback()
        assert db.query(GeofenceEvent).count() == 2

    def test_recent_visit_is_left_open(self, db, base_ts):
        step(db, 30, base_ts)
        assert close_stale_visits(db, timedelta(hours=3), 5) == []
        assert db.query(Visit).one().is_open

    def test_sweep_closes_visits_of_inactive_trackers(self, db, base_ts):
        step(db, 30, base_ts)
        db.query(Tracker).filter(Tracker.tracker_id == "T1").update({Tracker.active: False})
        db.commit()

        events = close_stale_visits(db, timedelta(hours=3), 5)
        assert len(events) == 1
        assert db.query(Visit).one().close_reason == "deactivated"

    def test_deactivate_tracker(self, db, base_ts):
        step(db, 30, base_ts)
        events = deactivate_tracker(db, "T1", 5)
        assert [(e.event_type, e.zone_code) for e in events] == [("exit", "Z1")]
        assert db.query(Tracker).filter(Tracker.tracker_id == "T1").one().active is False
        assert open_visits_for(db, "T1") == []

    def test_deactivate_unknown_tracker(self, db):
        with pytest.raises(LookupError):
            deactivate_tracker(db, "NOPE", 5)


class TestEmit:
    def test_event_starts_pending(self, db, base_ts):
        event = step(db, 30, base_ts)[0]
        assert event.delivery_status == "pending"
        assert event.delivery_attempts == 0
        assert event.sent_at is None
        assert event.distance_m == pytest.approx(30, abs=0.01)
        assert event.accuracy_m == 10
        assert event.battery_pct == 80

    def test_one_event_per_visit_and_type(self, db, base_ts):
        event = step(db, 30, base_ts)[0]
        visit = db.get(Visit, event.visit_id)
        db.add(GeofenceEvent(event_type="enter", tracker_id="T1", zone_code="Z1", visit_id=visit.id,
                             latitude=0, longitude=0, event_time=visit.entry_time,
                             created_at=visit.entry_time, delivery_status="pending"))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
