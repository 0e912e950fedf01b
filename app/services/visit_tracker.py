# app/services/visit_tracker.py
"""
Visit State Tracker — per (tracker, zone): Closed → Open → Closed.

How it works:
  - ping inside zone Z, no open visit on Z      → open a visit      → ENTER
  - ping inside zone Z, visit on Z already open → refresh last_seen  → nothing
  - ping outside (or inside another zone)       → close open visits → EXIT
  - zone change yields EXIT(old) then ENTER(new) with the same timestamp

Callers must hold the tracker's lock (see location_processor) and commit;
nothing here commits except the sweeps at the bottom.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence
from sqlalchemy.orm import Session
from app.models.geofence_event import GeofenceEvent, EventType
from app.models.tracker import Tracker
from app.models.visit import Visit
from app.models.zone import Zone
from app.services.config_store import ConfigSnapshot, ZoneSnapshot
from app.services.event_emitter import Transition, emit
from app.services.geofence_matcher import MembershipResult, haversine_distance
from app.services.ingestion_gateway import AcceptedPing
from app.utils.timeutils import utc_now
from app.utils.logger import get_logger

logger = get_logger(__name__)

SHORT_VISIT_MAX_MINUTES = 30
NORMAL_VISIT_MAX_MINUTES = 90


def classify_visit(duration_seconds: int, min_visit_minutes: int) -> str:
    minutes = duration_seconds / 60
    if minutes < min_visit_minutes:
        return "invalid"
    if minutes < SHORT_VISIT_MAX_MINUTES:
        return "short"
    if minutes <= NORMAL_VISIT_MAX_MINUTES:
        return "normal"
    return "long"


def open_visits_for(db: Session, tracker_id: str) -> List[Visit]:
    return (
        db.query(Visit)
        .filter(Visit.tracker_id == tracker_id, Visit.exit_time == None)   # noqa: E711
        .order_by(Visit.entry_time.asc(), Visit.id.asc())
        .all()
    )


def close_visit(visit: Visit, at: datetime, lat: Optional[float], lng: Optional[float],
                reason: str, min_visit_minutes: int) -> Visit:
    """Close in place. Never produces a negative duration."""
    if at < visit.entry_time:
        logger.warning(f"[ANOMALY] Visit {visit.id} exit {at.isoformat()} before entry "
                       f"{visit.entry_time.isoformat()}; clamping duration to 0")
        at = visit.entry_time
    duration = int((at - visit.entry_time).total_seconds())
    visit.exit_time = at
    visit.exit_lat = lat
    visit.exit_lng = lng
    visit.duration_seconds = duration
    visit.is_short = duration < min_visit_minutes * 60
    visit.visit_type = classify_visit(duration, min_visit_minutes)
    visit.close_reason = reason
    logger.info(f"[VISIT] Closed {visit.tracker_id} ← {visit.zone_code} after {duration // 60} min ({reason})")
    return visit


def heal_duplicate_open_visits(visits: Sequence[Visit], min_visit_minutes: int) -> List[Visit]:
    """
    More than one open visit for the same (tracker, zone) is data corruption.
    Keep the newest, close the older ones where the newest began. No events
    are emitted for these: they were never real transitions.
    """
    newest = {}
    for visit in visits:
        newest[visit.zone_code] = visit   # visits are ordered oldest → newest
    healthy = []
    for visit in visits:
        keeper = newest[visit.zone_code]
        if visit is keeper:
            healthy.append(visit)
            continue
        logger.error(f"[ANOMALY] Duplicate open visits for {visit.tracker_id} @ {visit.zone_code}: "
                     f"closing visit {visit.id}, keeping {keeper.id}")
        close_visit(visit, keeper.entry_time, visit.last_lat, visit.last_lng,
                    "anomaly", min_visit_minutes)
    return healthy


def _distance_to(zone: Optional[ZoneSnapshot], lat: float, lng: float) -> Optional[float]:
    if zone is None:
        return None
    return haversine_distance(lat, lng, zone.latitude, zone.longitude)


def apply_membership(db: Session, accepted: AcceptedPing, membership: MembershipResult,
                     config: ConfigSnapshot, zones: Iterable[ZoneSnapshot] = ()) -> List[Transition]:
    """Fold one membership result into the tracker's visits. Returns transitions in order."""
    ping = accepted.ping
    tracker_id = accepted.tracker.tracker_id
    at = accepted.reported_at
    zone_index = {z.code: z for z in zones}
    matched_code = membership.zone_code

    transitions = []
    current = None
    for visit in heal_duplicate_open_visits(open_visits_for(db, tracker_id), config.min_visit_minutes):
        if visit.zone_code == matched_code:
            current = visit
            continue
        close_visit(visit, at, ping.latitude, ping.longitude,
                    "zone_change" if matched_code else "exit", config.min_visit_minutes)
        transitions.append(Transition(
            event_type=EventType.EXIT,
            visit=visit,
            latitude=ping.latitude,
            longitude=ping.longitude,
            event_time=visit.exit_time,
            distance_m=_distance_to(zone_index.get(visit.zone_code), ping.latitude, ping.longitude),
            accuracy_m=ping.accuracy,
            battery_pct=ping.battery,
            is_short=visit.is_short,
        ))

    if matched_code is None:
        return transitions

    if current is not None:
        current.last_seen_at = max(current.last_seen_at, at)
        current.last_lat = ping.latitude
        current.last_lng = ping.longitude
        return transitions

    visit = Visit(
        tracker_id=tracker_id,
        zone_code=matched_code,
        entry_time=at,
        entry_lat=ping.latitude,
        entry_lng=ping.longitude,
        is_short=False,
        last_seen_at=at,
        last_lat=ping.latitude,
        last_lng=ping.longitude,
    )
    db.add(visit)
    db.flush()
    logger.info(f"[VISIT] Opened {tracker_id} → {matched_code} ({round(membership.distance_m)}m from center)")
    transitions.append(Transition(
        event_type=EventType.ENTER,
        visit=visit,
        latitude=ping.latitude,
        longitude=ping.longitude,
        event_time=at,
        distance_m=membership.distance_m,
        accuracy_m=ping.accuracy,
        battery_pct=ping.battery,
    ))
    return transitions


def _force_close(db: Session, visits: Iterable[Visit], reason: str,
                 min_visit_minutes: int) -> List[GeofenceEvent]:
    """Close at the last confirmed presence and emit an exit event for each visit."""
    zones = {z.code: z for z in db.query(Zone).all()}
    events = []
    for visit in visits:
        close_visit(visit, visit.last_seen_at, visit.last_lat, visit.last_lng, reason, min_visit_minutes)
        zone = zones.get(visit.zone_code)
        distance = None
        if zone is not None and visit.last_lat is not None:
            distance = haversine_distance(visit.last_lat, visit.last_lng, zone.latitude, zone.longitude)
        events.append(emit(db, Transition(
            event_type=EventType.EXIT,
            visit=visit,
            latitude=visit.last_lat if visit.last_lat is not None else visit.entry_lat,
            longitude=visit.last_lng if visit.last_lng is not None else visit.entry_lng,
            event_time=visit.exit_time,
            distance_m=distance,
            is_short=visit.is_short,
        )))
    return events


def close_visits_for_tracker(db: Session, tracker_id: str, reason: str,
                             min_visit_minutes: int) -> List[GeofenceEvent]:
    events = _force_close(db, open_visits_for(db, tracker_id), reason, min_visit_minutes)
    db.commit()
    return events


def deactivate_tracker(db: Session, tracker_id: str, min_visit_minutes: int) -> List[GeofenceEvent]:
    """Deactivate a tracker and force-close its in-flight visits in one transaction."""
    tracker = db.query(Tracker).filter(Tracker.tracker_id == tracker_id).first()
    if not tracker:
        raise LookupError(f"Tracker {tracker_id} not found")
    tracker.active = False
    events = close_visits_for_tracker(db, tracker_id, "deactivated", min_visit_minutes)
    logger.info(f"[VISIT] Tracker {tracker_id} deactivated, {len(events)} visit(s) closed")
    return events


def close_stale_visits(db: Session, stale_after: timedelta, min_visit_minutes: int,
                       now: Optional[datetime] = None) -> List[GeofenceEvent]:
    """
    Sweep: close open visits with no ping for stale_after, and open visits of
    trackers that were deactivated behind our back. Visit rows locked by
    another sweep are skipped. A ping closing the same visit concurrently
    collides on the unique (visit_id, event_type) constraint, so only one
    exit event is ever stored; the loser rolls back and retries.
    """
    now = now or utc_now()
    inactive = {t.tracker_id for t in db.query(Tracker.tracker_id).filter(Tracker.active == False)}   # noqa: E712
    candidates = (
        db.query(Visit)
        .filter(Visit.exit_time == None)   # noqa: E711
        .order_by(Visit.entry_time.asc())
        .with_for_update(skip_locked=True)
        .all()
    )
    cutoff = now - stale_after
    deactivated = [v for v in candidates if v.tracker_id in inactive]
    stale = [v for v in candidates if v.tracker_id not in inactive and v.last_seen_at < cutoff]

    events = _force_close(db, deactivated, "deactivated", min_visit_minutes)
    events += _force_close(db, stale, "stale", min_visit_minutes)
    db.commit()
    if events:
        logger.info(f"[VISIT] Sweep closed {len(stale)} stale and {len(deactivated)} deactivated visit(s)")
    return events
