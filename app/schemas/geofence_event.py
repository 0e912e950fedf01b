from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class GeofenceEventOut(BaseModel):
    id: int
    event_type: str
    tracker_id: str
    zone_code: str
    latitude: float
    longitude: float
    distance_m: Optional[float]
    accuracy_m: Optional[float]
    battery_pct: Optional[float]
    event_time: datetime
    is_short_visit: bool
    delivery_status: str
    delivery_error: Optional[str]
    delivery_attempts: int
    sent_at: Optional[datetime]

    class Config:
        from_attributes = True
