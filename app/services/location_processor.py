# app/services/location_processor.py
"""
Location processing pipeline — one call per ping:

    Ingestion Gateway → Geofence Matcher → (tracker lock) → Visit State Tracker
    → Event Emitter → commit → Notification Dispatcher (scheduled, not awaited)

Never raises to the protocol adapter. Every outcome is a ProcessingResult:
    {processed: true, events: [...]}
    {processed: false, skipped: true, reason, message}
    {processed: false, error}

Pings for the same tracker are serialized by a per-tracker asyncio lock (and a
row lock on tracker_state for multi-process deployments). Validation reads and
the DB work run in worker threads so the event loop never waits on storage.
PROCESSING_TIMEOUT_SECONDS bounds the whole ping, including the wait for the
tracker's lock, which is only released once the previous thread has finished.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from app.config import settings
from app.database import SessionLocal
from app.exceptions import PingRejected, RejectionReason
from app.models.tracker import Tracker
from app.models.tracker_state import TrackerState
from app.services.config_store import ConfigProvider, ConfigSnapshot
from app.services.event_emitter import emit
from app.services.geofence_matcher import MembershipResult, match
from app.services.ingestion_gateway import AcceptedPing, LocationPing, submit
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.visit_tracker import apply_membership
from app.utils.keyed_lock import KeyedLock
from app.utils.timeutils import utc_now
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Retried inside one ping: lost connections and a concurrent writer winning a unique race
_TRANSIENT_ERRORS = (OperationalError, IntegrityError)


@dataclass
class ProcessingResult:
    processed: bool
    skipped: bool = False
    reason: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    events: List[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        if self.error is not None:
            return {"processed": False, "error": self.error}
        if self.skipped:
            return {"processed": False, "skipped": True, "reason": self.reason, "message": self.message}
        return {"processed": self.processed, "events": self.events}


class LocationProcessor:
    def __init__(self, session_factory=None, config_provider: Optional[ConfigProvider] = None,
                 dispatcher: Optional[NotificationDispatcher] = None, timeout: float = None):
        self._session_factory = session_factory or SessionLocal
        self.config_provider = config_provider or ConfigProvider(self._session_factory)
        self.dispatcher = dispatcher or NotificationDispatcher(self._session_factory)
        self.timeout = settings.PROCESSING_TIMEOUT_SECONDS if timeout is None else timeout
        self._locks = KeyedLock()

    async def process_payload(self, payload: dict) -> ProcessingResult:
        return await self.process(LocationPing.from_payload(payload))

    async def process(self, ping: LocationPing) -> ProcessingResult:
        logger.info(f"📍 Ping {ping.tracker_id} @ {ping.latitude}, {ping.longitude} "
                    f"acc={ping.accuracy} batt={ping.battery}")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            config, accepted, zones = await asyncio.wait_for(
                asyncio.to_thread(self._validate, ping), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._timed_out(ping, "validation")
        except PingRejected as rejection:
            return self._skipped(ping, rejection)
        except SQLAlchemyError as e:
            logger.error(f"Storage error validating ping from {ping.tracker_id}: {e}")
            return ProcessingResult(processed=False, error=f"storage unavailable: {type(e).__name__}")

        membership = match(ping, zones)
        tracker_id = accepted.tracker.tracker_id
        abandon = threading.Event()

        # The lock is held until the previous worker thread really finishes
        if not await self._locks.acquire(tracker_id, timeout=max(0.0, deadline - loop.time())):
            return self._timed_out(ping, "waiting for the tracker's previous ping")
        try:
            work = asyncio.ensure_future(asyncio.to_thread(
                self._persist_with_retry, accepted, membership, config, zones, abandon))
        except BaseException:
            self._locks.release(tracker_id)
            raise
        work.add_done_callback(lambda fut: self._work_done(tracker_id, fut))

        try:
            events = await asyncio.wait_for(asyncio.shield(work),
                                            timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            abandon.set()
            return self._timed_out(ping, "persisting")
        except PingRejected as rejection:
            return self._skipped(ping, rejection)
        except SQLAlchemyError as e:
            logger.error(f"Storage error processing ping from {tracker_id}: {e}")
            return ProcessingResult(processed=False, error=f"storage unavailable: {type(e).__name__}")
        except Exception as e:
            logger.error(f"Unexpected error processing ping from {tracker_id}: {e}", exc_info=True)
            return ProcessingResult(processed=False, error=str(e))

        if events:
            logger.info(f"🎯 {tracker_id}: " + ", ".join(f"{e['event_type']} {e['zone_code']}" for e in events))
            self.dispatcher.schedule([e["id"] for e in events])
        return ProcessingResult(processed=True, events=events)

    def _validate(self, ping: LocationPing):
        """Snapshot reads + tracker lookup; runs in a worker thread."""
        config = self.config_provider.config()
        accepted = submit(ping, config, self._lookup_tracker, utc_now())
        return config, accepted, self.config_provider.zones()

    def _timed_out(self, ping: LocationPing, stage: str) -> ProcessingResult:
        return self._skipped(ping, PingRejected(RejectionReason.PROCESSING_TIMEOUT,
                                                f"no commit within {self.timeout}s ({stage})"))

    def _work_done(self, tracker_id: str, fut: asyncio.Future):
        self._locks.release(tracker_id)
        if not fut.cancelled():
            fut.exception()   # marks it retrieved when the caller already timed out

    def _lookup_tracker(self, tracker_id: str) -> Optional[Tracker]:
        db = self._session_factory()
        try:
            tracker = db.query(Tracker).filter(Tracker.tracker_id == tracker_id).first()
            if tracker is not None:
                db.expunge(tracker)
            return tracker
        finally:
            db.close()

    def _skipped(self, ping: LocationPing, rejection: PingRejected) -> ProcessingResult:
        reason = rejection.reason
        log = logger.warning if reason == RejectionReason.PROCESSING_TIMEOUT else logger.info
        log(f"⏭️  Ping from {ping.tracker_id} skipped: {reason.value}"
            f"{' — ' + rejection.detail if rejection.detail else ''}")
        return ProcessingResult(processed=False, skipped=True, reason=reason.value, message=reason.message)

    def _persist_with_retry(self, accepted: AcceptedPing, membership: MembershipResult,
                            config: ConfigSnapshot, zones, abandon: threading.Event) -> List[dict]:
        attempts = max(1, settings.STORAGE_RETRY_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                return self._persist(accepted, membership, config, zones, abandon)
            except _TRANSIENT_ERRORS as e:
                if attempt == attempts or abandon.is_set():
                    raise
                logger.warning(f"Transient storage error for {accepted.tracker.tracker_id} "
                               f"(attempt {attempt}/{attempts}): {type(e).__name__}")
                time.sleep(0.1 * attempt)

    def _persist(self, accepted: AcceptedPing, membership: MembershipResult,
                 config: ConfigSnapshot, zones, abandon: threading.Event) -> List[dict]:
        """One transaction: ordering watermark + visit changes + events."""
        tracker_id = accepted.tracker.tracker_id
        at = accepted.reported_at
        db = self._session_factory()
        try:
            state = (
                db.query(TrackerState)
                .filter(TrackerState.tracker_id == tracker_id)
                .with_for_update()
                .first()
            )
            if state is not None and at < state.last_ping_at:
                raise PingRejected(RejectionReason.OUT_OF_ORDER,
                                   f"{at.isoformat()} < {state.last_ping_at.isoformat()}")
            if state is None:
                state = TrackerState(tracker_id=tracker_id, last_ping_at=at)
                db.add(state)
            state.last_ping_at = at
            state.updated_at = utc_now()

            transitions = apply_membership(db, accepted, membership, config, zones)
            events = [emit(db, t) for t in transitions]

            if abandon.is_set():
                raise PingRejected(RejectionReason.PROCESSING_TIMEOUT, "abandoned before commit")
            db.commit()
            return [
                {
                    "id": e.id,
                    "event_type": e.event_type,
                    "zone_code": e.zone_code,
                    "event_time": e.event_time.isoformat(),
                    "is_short_visit": e.is_short_visit,
                }
                for e in events
            ]
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()
