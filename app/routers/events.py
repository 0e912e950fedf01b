"""Geofence event log — enter/exit transitions and their delivery status."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from app.database import get_db
from app.models.geofence_event import GeofenceEvent
from app.schemas.geofence_event import GeofenceEventOut

router = APIRouter()


@router.get("/geofence-events", response_model=list[GeofenceEventOut], summary="List geofence events")
def list_events(limit: int = 50, tracker_id: Optional[str] = None, zone_code: Optional[str] = None,
                delivery_status: Optional[str] = None, db: Session = Depends(get_db)):
    """Newest first. Filter by tracker, zone, or outbox status (pending | sent | failed)."""
    q = db.query(GeofenceEvent)
    if tracker_id:
        q = q.filter(GeofenceEvent.tracker_id == tracker_id)
    if zone_code:
        q = q.filter(GeofenceEvent.zone_code == zone_code)
    if delivery_status:
        q = q.filter(GeofenceEvent.delivery_status == delivery_status)
    return q.order_by(GeofenceEvent.event_time.desc(), GeofenceEvent.id.desc()).limit(limit).all()


@router.get("/geofence-events/{event_id}", response_model=GeofenceEventOut)
def get_event(event_id: int, db: Session = Depends(get_db)):
    event = db.get(GeofenceEvent, event_id)
    if not event:
        raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
    return event
