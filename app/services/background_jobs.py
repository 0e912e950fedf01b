# app/services/background_jobs.py
"""
Periodic jobs running on the application's event loop:

  - outbox sweep:  NotificationDispatcher.retry_pending() every RETRY_SWEEP_INTERVAL_SECONDS
  - stale visits:  visit_tracker.close_stale_visits() every STALE_SWEEP_INTERVAL_SECONDS

Each loop survives its own failures; a crash in one sweep is logged and the
next tick runs normally.
"""

import asyncio
from datetime import timedelta
from app.config import settings
from app.database import SessionLocal
from app.services.config_store import ConfigProvider
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.visit_tracker import close_stale_visits
from app.utils.logger import get_logger

logger = get_logger(__name__)


async def _every(name: str, interval: float, job):
    """Run job() forever, sleeping interval seconds between runs."""
    logger.info(f"⏱  {name} scheduled every {interval}s")
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ {name} failed: {e}", exc_info=True)
        await asyncio.sleep(interval)


async def sweep_stale_visits(dispatcher: NotificationDispatcher, config_provider: ConfigProvider,
                             session_factory=SessionLocal):
    """Close silent visits and queue their exit events for delivery."""
    stale_after = timedelta(hours=settings.STALE_VISIT_HOURS)

    def _close():
        min_visit_minutes = config_provider.config().min_visit_minutes
        db = session_factory()
        try:
            return [e.id for e in close_stale_visits(db, stale_after, min_visit_minutes)]
        finally:
            db.close()

    event_ids = await asyncio.to_thread(_close)
    if event_ids:
        dispatcher.schedule(event_ids)


def start_background_jobs(dispatcher: NotificationDispatcher, config_provider: ConfigProvider) -> list:
    """
    Launch both periodic loops. Called once at backend startup.
    Returns the tasks so shutdown can cancel them.
    """
    return [
        asyncio.create_task(
            _every("Notification retry sweep", settings.RETRY_SWEEP_INTERVAL_SECONDS,
                   dispatcher.retry_pending),
            name="outbox-sweep",
        ),
        asyncio.create_task(
            _every("Stale visit sweep", settings.STALE_SWEEP_INTERVAL_SECONDS,
                   lambda: sweep_stale_visits(dispatcher, config_provider)),
            name="stale-visit-sweep",
        ),
    ]
