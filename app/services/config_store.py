# app/services/config_store.py
"""
Configuration Store + Zone Directory.

Admins write key/value rows to system_config (and zones to the zones table);
the ingestion path never reads those tables per ping. Instead it receives
immutable snapshots that are reloaded at most every CONFIG_REFRESH_SECONDS.
"""

import threading
import time as _time
from dataclasses import dataclass
from datetime import time
from typing import Callable, Optional, Tuple
from sqlalchemy.orm import Session
from app.config import settings
from app.exceptions import ConfigError
from app.models.system_config import SystemConfig
from app.models.zone import Zone
from app.utils.timeutils import parse_hhmm, tzinfo_from_name, utc_now
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigSnapshot:
    system_active: bool
    work_hours_start: time
    work_hours_end: time
    work_days: Tuple[int, ...]
    timezone: str
    default_radius_m: float
    min_visit_minutes: int
    max_accuracy_m: float


@dataclass(frozen=True)
class ZoneSnapshot:
    code: str
    name: str
    latitude: float
    longitude: float
    radius_m: float
    group_name: Optional[str] = None


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "1", "yes", "on"):
        return True
    if v in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def _parse_days(value: str) -> Tuple[int, ...]:
    days = tuple(sorted({int(d) for d in value.split(",") if d.strip()}))
    if not days or any(d < 1 or d > 7 for d in days):
        raise ValueError(f"Expected ISO weekdays 1-7, got {value!r}")
    return days


def _parse_timezone(value: str) -> str:
    tzinfo_from_name(value)
    return value.strip()


def _parse_positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise ValueError(f"Expected a positive number, got {value!r}")
    return number


def _parse_non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise ValueError(f"Expected a non-negative integer, got {value!r}")
    return number


# key → (parser, default from settings)
CONFIG_KEYS: dict[str, Tuple[Callable[[str], object], Callable[[], object]]] = {
    "system_active": (_parse_bool, lambda: settings.SYSTEM_ACTIVE),
    "work_hours_start": (parse_hhmm, lambda: parse_hhmm(settings.WORK_HOURS_START)),
    "work_hours_end": (parse_hhmm, lambda: parse_hhmm(settings.WORK_HOURS_END)),
    "work_days": (_parse_days, lambda: _parse_days(settings.WORK_DAYS)),
    "timezone": (_parse_timezone, lambda: settings.WORK_TIMEZONE),
    "default_radius_m": (_parse_positive_float, lambda: settings.DEFAULT_RADIUS_M),
    "min_visit_minutes": (_parse_non_negative_int, lambda: settings.MIN_VISIT_MINUTES),
    "max_accuracy_m": (_parse_positive_float, lambda: settings.MAX_ACCURACY_M),
}


def default_config_snapshot() -> ConfigSnapshot:
    return ConfigSnapshot(**{key: default() for key, (_, default) in CONFIG_KEYS.items()})


def load_config_snapshot(db: Session) -> ConfigSnapshot:
    """Read every system_config row once; bad or missing rows fall back to settings."""
    rows = {row.key: row.value for row in db.query(SystemConfig).all()}
    values = {}
    for key, (parse, default) in CONFIG_KEYS.items():
        raw = rows.get(key)
        if raw is None:
            values[key] = default()
            continue
        try:
            values[key] = parse(raw)
        except ValueError as e:
            logger.warning(f"[CONFIG] Ignoring bad value for {key}={raw!r}: {e}")
            values[key] = default()
    return ConfigSnapshot(**values)


def set_config(db: Session, key: str, value, updated_by: str = "system") -> SystemConfig:
    """Admin write path. Validates before storing so the snapshot never has to guess."""
    if key not in CONFIG_KEYS:
        raise ConfigError(f"Unknown config key: {key}")
    raw = str(value).lower() if isinstance(value, bool) else str(value)
    parse, _ = CONFIG_KEYS[key]
    try:
        parse(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e

    row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    if not row:
        row = SystemConfig(key=key)
        db.add(row)
    row.value = raw
    row.updated_by = updated_by
    row.updated_at = utc_now()
    db.commit()
    logger.info(f"[CONFIG] {key}={raw} (by {updated_by})")
    return row


def load_active_zones(db: Session, default_radius_m: float) -> Tuple[ZoneSnapshot, ...]:
    """Active zones as snapshots. Zones with impossible geometry are skipped, not fatal."""
    zones = []
    for z in db.query(Zone).filter(Zone.active == True).order_by(Zone.code).all():   # noqa: E712
        radius = z.radius_m if z.radius_m is not None else default_radius_m
        if radius <= 0 or not -90 <= z.latitude <= 90 or not -180 <= z.longitude <= 180:
            logger.warning(f"[ZONES] Skipping zone {z.code}: invalid geometry "
                           f"({z.latitude}, {z.longitude}) r={radius}")
            continue
        zones.append(ZoneSnapshot(code=z.code, name=z.name, latitude=z.latitude,
                                  longitude=z.longitude, radius_m=radius, group_name=z.group_name))
    return tuple(zones)


class SnapshotCache:
    """
    Holds one immutable value and reloads it when older than ttl_seconds.
    A failed reload keeps serving the previous snapshot.
    """

    def __init__(self, loader: Callable[[], object], ttl_seconds: float):
        self._loader = loader
        self._ttl = ttl_seconds
        self._value = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def get(self):
        with self._lock:
            if self._value is None or _time.monotonic() - self._loaded_at >= self._ttl:
                try:
                    self._value = self._loader()
                    self._loaded_at = _time.monotonic()
                except Exception as e:
                    if self._value is None:
                        raise
                    logger.error(f"[CONFIG] Snapshot reload failed, keeping previous: {e}")
            return self._value

    def invalidate(self):
        with self._lock:
            self._loaded_at = 0.0


class ConfigProvider:
    """Periodically-refreshed ConfigSnapshot + active zone list."""

    def __init__(self, session_factory, ttl_seconds: float = None):
        ttl = settings.CONFIG_REFRESH_SECONDS if ttl_seconds is None else ttl_seconds
        self._session_factory = session_factory
        self._config = SnapshotCache(self._load_config, ttl)
        self._zones = SnapshotCache(self._load_zones, ttl)

    def _load_config(self) -> ConfigSnapshot:
        db = self._session_factory()
        try:
            return load_config_snapshot(db)
        finally:
            db.close()

    def _load_zones(self) -> Tuple[ZoneSnapshot, ...]:
        db = self._session_factory()
        try:
            zones = load_active_zones(db, self.config().default_radius_m)
        finally:
            db.close()
        logger.info(f"[ZONES] Loaded {len(zones)} active zones")
        return zones

    def config(self) -> ConfigSnapshot:
        return self._config.get()

    def zones(self) -> Tuple[ZoneSnapshot, ...]:
        return self._zones.get()

    def refresh(self):
        self._config.invalidate()
        self._zones.invalidate()
