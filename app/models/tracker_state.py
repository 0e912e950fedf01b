# app/models/tracker_state.py
"""
Per-tracker processing watermark.
Pings older than last_ping_at are rejected as out of order. The row is also
locked (SELECT ... FOR UPDATE) while a ping mutates the tracker's visits.
"""

from sqlalchemy import Column, String, DateTime
from app.database import Base


class TrackerState(Base):
    __tablename__ = "tracker_state"

    tracker_id = Column(String(16), primary_key=True)
    last_ping_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<TrackerState {self.tracker_id} last_ping_at={self.last_ping_at}>"
