# app/services/event_emitter.py
"""
Event Emitter — turns a visit transition into a geofence_events row.

emit() only adds + flushes inside the caller's transaction: the event and the
visit change that produced it are committed together or not at all.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session
from app.models.geofence_event import GeofenceEvent, EventType, DeliveryStatus
from app.models.visit import Visit
from app.utils.timeutils import utc_now
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Transition:
    event_type: EventType
    visit: Visit
    latitude: float
    longitude: float
    event_time: datetime
    distance_m: Optional[float] = None
    accuracy_m: Optional[float] = None
    battery_pct: Optional[float] = None
    is_short: bool = False


def emit(db: Session, transition: Transition) -> GeofenceEvent:
    visit = transition.visit
    event = GeofenceEvent(
        event_type=transition.event_type.value,
        tracker_id=visit.tracker_id,
        zone_code=visit.zone_code,
        visit_id=visit.id,
        latitude=transition.latitude,
        longitude=transition.longitude,
        distance_m=transition.distance_m,
        accuracy_m=transition.accuracy_m,
        battery_pct=transition.battery_pct,
        event_time=transition.event_time,
        is_short_visit=transition.is_short,
        created_at=utc_now(),
        delivery_status=DeliveryStatus.PENDING.value,
        delivery_attempts=0,
    )
    db.add(event)
    db.flush()   # assigns event.id without committing
    logger.info(f"[EVENT] #{event.id} {event.event_type.upper()} {event.tracker_id} @ {event.zone_code}"
                f"{' (short visit)' if event.is_short_visit else ''}")
    return event
