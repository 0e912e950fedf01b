# app/services/ingestion_gateway.py
"""
Ingestion Gateway — validates one location ping at a time.

submit() runs the checks in a fixed order and raises PingRejected with the
first failing reason. It does no writes: the tracker lookup is injected and
the config is an immutable snapshot, so it can be tested without a DB.

Accepts the canonical payload:
    {tracker_id, latitude, longitude, timestamp, accuracy?, battery?, velocity?}
and the OwnTracks one:
    {_type: "location", tid, lat, lon, tst, acc?, batt?, vel?}
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from app.config import settings
from app.exceptions import PingRejected, RejectionReason
from app.models.tracker import Tracker
from app.services.config_store import ConfigSnapshot
from app.utils.timeutils import from_epoch, is_within_work_hours
from app.utils.logger import get_logger

logger = get_logger(__name__)

_OWNTRACKS_FIELDS = {
    "tid": "tracker_id",
    "lat": "latitude",
    "lon": "longitude",
    "tst": "timestamp",
    "acc": "accuracy",
    "batt": "battery",
    "vel": "velocity",
}


def _to_float(value: Any) -> Optional[float]:
    """Lenient numeric parse: None / non-numeric / NaN / inf → None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class LocationPing:
    tracker_id: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    timestamp: Optional[float]           # epoch seconds, device clock
    accuracy: Optional[float] = None     # meters; None/0 = unknown
    battery: Optional[float] = None      # percent
    velocity: Optional[float] = None     # km/h

    @classmethod
    def from_payload(cls, payload: dict) -> "LocationPing":
        """Build a ping from either payload shape. Never raises: bad values become None."""
        data = dict(payload)
        for short, canonical in _OWNTRACKS_FIELDS.items():
            if short in data and canonical not in data:
                data[canonical] = data[short]

        tracker_id = data.get("tracker_id")
        tracker_id = str(tracker_id).strip() if tracker_id is not None else None
        return cls(
            tracker_id=tracker_id or None,
            latitude=_to_float(data.get("latitude")),
            longitude=_to_float(data.get("longitude")),
            timestamp=_to_float(data.get("timestamp")),
            accuracy=_to_float(data.get("accuracy")),
            battery=_to_float(data.get("battery")),
            velocity=_to_float(data.get("velocity")),
        )

    @property
    def reported_at(self) -> datetime:
        return from_epoch(self.timestamp)


@dataclass(frozen=True)
class AcceptedPing:
    """A ping that passed every check, plus the tracker it resolved to."""
    ping: LocationPing
    tracker: Tracker

    @property
    def reported_at(self) -> datetime:
        return self.ping.reported_at


def _valid_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    return lat is not None and lng is not None and -90 <= lat <= 90 and -180 <= lng <= 180


def submit(ping: LocationPing, config: ConfigSnapshot,
           tracker_lookup: Callable[[str], Optional[Tracker]], now: datetime) -> AcceptedPing:
    """
    Validate a ping. Order matters: the first failing check wins.
    Raises PingRejected; returns the ping plus its resolved Tracker.
    """
    if not ping.tracker_id:
        raise PingRejected(RejectionReason.MISSING_IDENTITY)

    if not _valid_coordinates(ping.latitude, ping.longitude):
        raise PingRejected(RejectionReason.INVALID_COORDINATES,
                           f"lat={ping.latitude} lng={ping.longitude}")

    if ping.timestamp is None:
        raise PingRejected(RejectionReason.MISSING_TIMESTAMP)

    try:
        reported_at = ping.reported_at
    except (OverflowError, OSError, ValueError):
        raise PingRejected(RejectionReason.MISSING_TIMESTAMP, f"unusable timestamp {ping.timestamp}")

    if reported_at > now + timedelta(seconds=settings.FUTURE_TOLERANCE_SECONDS):
        raise PingRejected(RejectionReason.FUTURE_TIMESTAMP, f"{reported_at.isoformat()} > now")

    if reported_at < now - timedelta(days=settings.MAX_PING_AGE_DAYS):
        raise PingRejected(RejectionReason.STALE_TIMESTAMP, reported_at.isoformat())

    tracker = tracker_lookup(ping.tracker_id)
    if tracker is None or not tracker.active:
        raise PingRejected(RejectionReason.UNKNOWN_IDENTITY, ping.tracker_id)

    if not config.system_active:
        raise PingRejected(RejectionReason.SYSTEM_PAUSED)

    if not is_within_work_hours(reported_at, config.work_hours_start, config.work_hours_end,
                                config.work_days, config.timezone):
        raise PingRejected(RejectionReason.OUTSIDE_WORK_HOURS, reported_at.isoformat())

    if ping.accuracy and ping.accuracy > config.max_accuracy_m:
        raise PingRejected(RejectionReason.LOW_ACCURACY,
                           f"{ping.accuracy}m > {config.max_accuracy_m}m")

    return AcceptedPing(ping=ping, tracker=tracker)
