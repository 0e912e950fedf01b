# app/models/system_config.py
"""
Runtime configuration rows (system_active, work_hours_start, ...).
Written by admins, read as a snapshot by config_store.
"""

from sqlalchemy import Column, String, DateTime
from app.database import Base


class SystemConfig(Base):
    __tablename__ = "system_config"

    key = Column(String(50), primary_key=True)
    value = Column(String(200), nullable=False)
    updated_by = Column(String(100))
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<SystemConfig {self.key}={self.value}>"
