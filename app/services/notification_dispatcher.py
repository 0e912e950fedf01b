# app/services/notification_dispatcher.py
"""
Notification Dispatcher — the geofence_events table is the outbox.

  - emit() leaves every new event delivery_status=pending
  - schedule() tries to deliver right after the ingestion commit (best effort)
  - retry_pending() runs on a timer and re-sends pending/failed events from the
    last RETRY_LOOKBACK_MINUTES, so delivery survives restarts and outages
  - a short claim lease (claimed_at) stops the two paths from sending the
    same event at the same time; sent is terminal

Delivery problems only ever change the event's own status; ingestion never
waits on this module.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from app.config import settings
from app.exceptions import DeliveryError
from app.models.geofence_event import GeofenceEvent, EventType, DeliveryStatus
from app.models.tracker import Tracker
from app.models.zone import Zone
from app.services.telegram_notifier import TelegramNotifier
from app.utils.timeutils import to_local, utc_now
from app.utils.logger import get_logger

logger = get_logger(__name__)


def _battery_icon(percentage: float) -> str:
    if percentage >= 50:
        return "🔋"
    if percentage >= 20:
        return "🪫"
    return "📱"


def render_alert_message(event: GeofenceEvent, tracker: Optional[Tracker], zone: Optional[Zone],
                         tz_name: str = None) -> str:
    """Markdown alert text for one event. Pure formatting."""
    is_entry = event.event_type == EventType.ENTER.value
    icon = "🟢" if is_entry else "🔴"
    action = "ENTRY" if is_entry else "EXIT"
    verb = "entered" if is_entry else "left"
    local_time = to_local(event.event_time, tz_name or settings.WORK_TIMEZONE)

    name = tracker.display_name if tracker else event.tracker_id
    lines = [
        f"{icon} *{action} DETECTED*",
        "",
        f"👤 *{name}* ({event.tracker_id})",
        verb,
        f"🏢 *{zone.name if zone else event.zone_code}*",
    ]
    if zone and zone.group_name:
        lines.append(f"📍 {zone.group_name}")
    lines.append(f"🕒 {local_time.strftime('%Y-%m-%d %H:%M:%S')}")
    if event.distance_m is not None:
        lines.append(f"📏 {round(event.distance_m)}m from center")
    if event.accuracy_m:
        lines.append(f"🎯 Accuracy: {round(event.accuracy_m)}m")
    if event.battery_pct is not None:
        lines.append(f"{_battery_icon(event.battery_pct)} Battery: {round(event.battery_pct)}%")
    if event.is_short_visit:
        lines.append("⚠️ Short visit")
    lines.append("")
    lines.append(f"🗺️ [View on map](https://maps.google.com/maps?q={event.latitude:.6f},{event.longitude:.6f})")
    lines.append(f"_ID: {event.id}_")
    return "\n".join(lines)


@dataclass
class SweepReport:
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class NotificationDispatcher:
    def __init__(self, session_factory, sender=None, admin_target: Optional[str] = None,
                 send_timeout: float = None):
        self._session_factory = session_factory
        self.sender = sender or TelegramNotifier()
        self.admin_target = admin_target or settings.TELEGRAM_ADMIN_CHAT_ID
        self.send_timeout = settings.SEND_TIMEOUT_SECONDS if send_timeout is None else send_timeout
        self._sweep_lock = asyncio.Lock()
        self._tasks = set()

    def _claim(self, db: Session, event_id: int) -> bool:
        """Atomically take the event for sending. False if sent or claimed by someone else."""
        now = utc_now()
        lease_expired = now - timedelta(seconds=settings.CLAIM_LEASE_SECONDS)
        claimed = (
            db.query(GeofenceEvent)
            .filter(
                GeofenceEvent.id == event_id,
                GeofenceEvent.delivery_status != DeliveryStatus.SENT.value,
                or_(GeofenceEvent.claimed_at == None, GeofenceEvent.claimed_at < lease_expired),   # noqa: E711
            )
            .update({GeofenceEvent.claimed_at: now}, synchronize_session=False)
        )
        db.commit()
        return claimed == 1

    async def dispatch(self, db: Session, event: GeofenceEvent) -> GeofenceEvent:
        """
        Send one event. Sent events are a no-op; pending and failed ones are sent.
        Raises DeliveryError after recording the failure on the event.
        Session work runs in worker threads, one call at a time.
        """
        prepared = await asyncio.to_thread(self._prepare, db, event)
        if prepared is None:
            return event
        tracker, zone, target = prepared

        error = None
        try:
            if not target:
                raise DeliveryError(f"No notification target for {event.tracker_id} and no admin fallback")
            text = render_alert_message(event, tracker, zone)
            await asyncio.wait_for(self.sender.send(target, text), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            error = f"Send timed out after {self.send_timeout}s"
        except DeliveryError as e:
            error = str(e)
        except Exception as e:
            logger.error(f"[NOTIFY] Unexpected error sending event #{event.id}: {e}", exc_info=True)
            error = f"{type(e).__name__}: {e}"

        await asyncio.to_thread(self._record, db, event, target, error)
        if error is not None:
            raise DeliveryError(error)
        return event

    def _prepare(self, db: Session, event: GeofenceEvent):
        """Claim the event and load what the message needs. None when there is nothing to send."""
        if event.delivery_status == DeliveryStatus.SENT.value:
            return None
        if not self._claim(db, event.id):
            logger.debug(f"[NOTIFY] Event #{event.id} already sent or being sent — skipped")
            db.refresh(event)
            return None
        db.refresh(event)
        tracker = db.query(Tracker).filter(Tracker.tracker_id == event.tracker_id).first()
        zone = db.query(Zone).filter(Zone.code == event.zone_code).first()
        target = (tracker.notification_target if tracker else None) or self.admin_target
        return tracker, zone, target

    def _record(self, db: Session, event: GeofenceEvent, target: Optional[str], error: Optional[str]):
        event.delivery_attempts = (event.delivery_attempts or 0) + 1
        event.claimed_at = None
        if error is None:
            event.delivery_status = DeliveryStatus.SENT.value
            event.delivery_error = None
            event.sent_at = utc_now()
        else:
            event.delivery_status = DeliveryStatus.FAILED.value
            event.delivery_error = error[:1000]
        db.commit()
        db.refresh(event)   # loaded here so callers on the loop never trigger a lazy load
        if error is None:
            logger.info(f"[NOTIFY] Event #{event.id} {event.event_type} {event.tracker_id} sent to {target}")
        else:
            logger.warning(f"[NOTIFY] Event #{event.id} failed (attempt {event.delivery_attempts}): {error}")

    def _pending_events(self, db: Session):
        since = utc_now() - timedelta(minutes=settings.RETRY_LOOKBACK_MINUTES)
        return (
            db.query(GeofenceEvent)
            .filter(
                GeofenceEvent.delivery_status.in_([DeliveryStatus.PENDING.value,
                                                   DeliveryStatus.FAILED.value]),
                GeofenceEvent.created_at >= since,
                GeofenceEvent.delivery_attempts < settings.MAX_DELIVERY_ATTEMPTS,
            )
            .order_by(GeofenceEvent.created_at.asc(), GeofenceEvent.id.asc())
            .limit(settings.RETRY_BATCH_SIZE)
            .all()
        )

    async def retry_pending(self) -> Optional[SweepReport]:
        """
        Re-send pending/failed events inside the lookback window, oldest first.
        Returns None when another sweep is already running.
        """
        if self._sweep_lock.locked():
            logger.info("[NOTIFY] Retry sweep already running — skipped")
            return None

        async with self._sweep_lock:
            report = SweepReport()
            db = self._session_factory()
            try:
                for event in await asyncio.to_thread(self._pending_events, db):
                    report.attempted += 1
                    try:
                        await self.dispatch(db, event)
                    except DeliveryError:
                        report.failed += 1
                        continue
                    if event.delivery_status == DeliveryStatus.SENT.value:
                        report.sent += 1
                    else:
                        report.skipped += 1
            finally:
                await asyncio.to_thread(db.close)

        if report.attempted:
            logger.info(f"[NOTIFY] Retry sweep: {report.sent} sent, {report.failed} failed, "
                        f"{report.skipped} skipped of {report.attempted}")
        return report

    async def deliver_now(self, event_ids: Iterable[int]):
        """Immediate delivery attempt after ingestion. Failures are left to the sweep."""
        db = self._session_factory()
        try:
            for event_id in event_ids:
                event = await asyncio.to_thread(db.get, GeofenceEvent, event_id)
                if event is None:
                    continue
                try:
                    await self.dispatch(db, event)
                except DeliveryError:
                    pass   # recorded on the event; retry_pending picks it up
        finally:
            await asyncio.to_thread(db.close)

    def schedule(self, event_ids: Iterable[int]) -> Optional[asyncio.Task]:
        """Fire-and-forget deliver_now() on the running loop."""
        ids = list(event_ids)
        if not ids:
            return None
        task = asyncio.get_running_loop().create_task(self.deliver_now(ids))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[NOTIFY] Immediate delivery task crashed: {task.exception()}")
