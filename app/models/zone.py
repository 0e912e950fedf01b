# app/models/zone.py
"""
Geofence zones — a circle around each business location (branch).
Managed by admins outside this service; only active zones are matched.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean
from app.database import Base


class Zone(Base):
    __tablename__ = "zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_m = Column(Float)                     # null → configured default radius
    active = Column(Boolean, default=True, nullable=False)
    group_name = Column(String(100))             # operational group, shown in alerts
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Zone {self.code} r={self.radius_m}m active={self.active}>"
