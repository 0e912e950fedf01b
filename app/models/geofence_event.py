# app/models/geofence_event.py
"""
Geofence events — one immutable row per enter/exit transition.
The delivery_* columns are the notification outbox and are only written by
notification_dispatcher.
"""

from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Text, UniqueConstraint
from app.database import Base


class EventType(str, Enum):
    ENTER = "enter"
    EXIT = "exit"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class GeofenceEvent(Base):
    __tablename__ = "geofence_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(10), nullable=False)      # enter | exit
    tracker_id = Column(String(16), nullable=False, index=True)
    zone_code = Column(String(50), nullable=False, index=True)
    visit_id = Column(Integer, nullable=False)           # FK to visits.id
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    distance_m = Column(Float)
    accuracy_m = Column(Float)
    battery_pct = Column(Float)
    event_time = Column(DateTime, nullable=False, index=True)   # device time of the ping
    is_short_visit = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    # Outbox
    delivery_status = Column(String(10), default=DeliveryStatus.PENDING.value, nullable=False, index=True)
    delivery_error = Column(Text)
    delivery_attempts = Column(Integer, default=0, nullable=False)
    claimed_at = Column(DateTime)
    sent_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("visit_id", "event_type", name="uq_geofence_events_visit_type"),
    )

    def __repr__(self):
        return (f"<GeofenceEvent {self.id} {self.event_type} {self.tracker_id}@{self.zone_code} "
                f"status={self.delivery_status}>")
