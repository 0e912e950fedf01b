# app/models/tracker.py
"""
Tracked field personnel / devices.
Rows are created by the external user-management side; the core only reads
them, except deactivation (see visit_tracker.deactivate_tracker).
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from app.database import Base


class Tracker(Base):
    __tablename__ = "trackers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tracker_id = Column(String(16), unique=True, nullable=False, index=True)   # OwnTracks tid, e.g. "RD01"
    display_name = Column(String(200), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    notification_target = Column(String(100))   # Telegram chat id; admin fallback if null
    created_at = Column(DateTime)

    def __repr__(self):
        return f"<Tracker {self.tracker_id} name={self.display_name} active={self.active}>"
