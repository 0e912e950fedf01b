# app/models/visit.py
"""
Visits — one session of a tracker being inside a zone.
Open while exit_time is null. Never deleted, only closed.
The partial unique index keeps at most one open visit per (tracker, zone).
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, Index, text
from app.database import Base


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracker_id = Column(String(16), nullable=False, index=True)
    zone_code = Column(String(50), nullable=False, index=True)
    entry_time = Column(DateTime, nullable=False, index=True)
    entry_lat = Column(Float, nullable=False)
    entry_lng = Column(Float, nullable=False)
    exit_time = Column(DateTime)
    exit_lat = Column(Float)
    exit_lng = Column(Float)
    duration_seconds = Column(Integer)           # set on close
    is_short = Column(Boolean, default=False, nullable=False)
    visit_type = Column(String(20))              # invalid | short | normal | long
    close_reason = Column(String(20))            # exit | zone_change | stale | deactivated | anomaly
    last_seen_at = Column(DateTime, nullable=False)
    last_lat = Column(Float)
    last_lng = Column(Float)

    __table_args__ = (
        Index(
            "uq_visits_open_per_zone", "tracker_id", "zone_code",
            unique=True,
            postgresql_where=text("exit_time IS NULL"),
            sqlite_where=text("exit_time IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    def __repr__(self):
        state = "open" if self.is_open else f"closed {self.duration_seconds}s"
        return f"<Visit {self.id} {self.tracker_id}@{self.zone_code} {state}>"
