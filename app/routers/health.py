"""
System health check endpoint.
Returns status of backend + DB + notification outbox backlog.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import func, text
from app.database import get_db
from app.config import settings
from app.models.geofence_event import GeofenceEvent, DeliveryStatus
from app.utils.timeutils import utc_now

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity
    - Outbox backlog (pending / failed events) and whether Telegram is configured
    - Current runtime config snapshot
    """
    result = {
        "status": "ok",
        "timestamp": utc_now().isoformat(),
        "backend": "ok",
        "database": "unknown",
        "telegram": "configured" if settings.TELEGRAM_BOT_TOKEN else "not configured",
        "outbox": {},
    }

    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
        counts = dict(
            db.query(GeofenceEvent.delivery_status, func.count(GeofenceEvent.id))
            .filter(GeofenceEvent.delivery_status != DeliveryStatus.SENT.value)
            .group_by(GeofenceEvent.delivery_status)
            .all()
        )
        result["outbox"] = {
            "pending": counts.get(DeliveryStatus.PENDING.value, 0),
            "failed": counts.get(DeliveryStatus.FAILED.value, 0),
        }
        config = request.app.state.location_processor.config_provider.config()
        result["system_active"] = config.system_active
        result["work_hours"] = f"{config.work_hours_start:%H:%M}-{config.work_hours_end:%H:%M}"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result
