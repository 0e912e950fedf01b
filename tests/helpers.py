# tests/helpers.py
"""Builders shared by the test modules: zones, config snapshots, ping payloads."""

import asyncio
import math
from datetime import time as dtime
from app.services.config_store import ConfigSnapshot, ZoneSnapshot

Z1_CENTER = (25.6866, -100.3161)
METERS_PER_DEGREE = 6_371_000 * math.pi / 180


def offset_north(lat, lng, meters):
    """Point `meters` due north of (lat, lng); exact for haversine along a meridian."""
    return lat + meters / METERS_PER_DEGREE, lng


Z2_CENTER = offset_north(*Z1_CENTER, 2000)

Z1 = ZoneSnapshot(code="Z1", name="Branch One", latitude=Z1_CENTER[0], longitude=Z1_CENTER[1],
                  radius_m=100, group_name="NORTE")
Z2 = ZoneSnapshot(code="Z2", name="Branch Two", latitude=Z2_CENTER[0], longitude=Z2_CENTER[1],
                  radius_m=50, group_name="NORTE")


def make_config(**overrides) -> ConfigSnapshot:
    """Round-the-clock, every-day config in UTC unless overridden."""
    values = dict(
        system_active=True,
        work_hours_start=dtime(0, 0),
        work_hours_end=dtime(23, 59),
        work_days=(1, 2, 3, 4, 5, 6, 7),
        timezone="UTC",
        default_radius_m=150.0,
        min_visit_minutes=5,
        max_accuracy_m=100.0,
    )
    values.update(overrides)
    return ConfigSnapshot(**values)


class StaticConfigProvider:
    def __init__(self, config=None, zones=(Z1, Z2)):
        self._config = config or make_config()
        self._zones = tuple(zones)

    def config(self):
        return self._config

    def zones(self):
        return self._zones


def ping_payload(meters_from_z1, ts, tracker="T1", **extra):
    """Canonical payload for a point `meters_from_z1` north of Z1's center."""
    lat, lng = offset_north(*Z1_CENTER, meters_from_z1)
    payload = {"tracker_id": tracker, "latitude": lat, "longitude": lng, "timestamp": ts,
               "accuracy": 10, "battery": 80}
    payload.update(extra)
    return payload


class LoopMonitor:
    """Async context manager recording the longest gap between event loop ticks."""

    def __init__(self, tick=0.01):
        self.tick = tick
        self.max_gap = 0.0
        self._task = None

    async def _beat(self):
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(self.tick)
            now = loop.time()
            self.max_gap = max(self.max_gap, now - last)
            last = now

    async def __aenter__(self):
        self._task = asyncio.create_task(self._beat())
        await asyncio.sleep(0)
        return self

    async def __aexit__(self, *exc):
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        return False
