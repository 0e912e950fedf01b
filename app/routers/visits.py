"""Visit log — open and closed presence sessions per tracker and zone."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from app.database import get_db
from app.models.visit import Visit
from app.schemas.visit import VisitOut

router = APIRouter()


@router.get("/visits", response_model=list[VisitOut], summary="List visits")
def list_visits(limit: int = 50, tracker_id: Optional[str] = None, zone_code: Optional[str] = None,
                open_only: bool = False, db: Session = Depends(get_db)):
    q = db.query(Visit)
    if tracker_id:
        q = q.filter(Visit.tracker_id == tracker_id)
    if zone_code:
        q = q.filter(Visit.zone_code == zone_code)
    if open_only:
        q = q.filter(Visit.exit_time == None)   # noqa: E711
    return q.order_by(Visit.entry_time.desc()).limit(limit).all()
