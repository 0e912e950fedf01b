from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class VisitOut(BaseModel):
    id: int
    tracker_id: str
    zone_code: str
    entry_time: datetime
    entry_lat: float
    entry_lng: float
    exit_time: Optional[datetime]
    exit_lat: Optional[float]
    exit_lng: Optional[float]
    duration_seconds: Optional[int]   # seconds
    is_short: bool
    visit_type: Optional[str]
    close_reason: Optional[str]
    last_seen_at: datetime

    class Config:
        from_attributes = True
