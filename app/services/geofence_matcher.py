# app/services/geofence_matcher.py
"""
Geofence Matcher — which active zone (if any) a ping is in.
Pure computation over a zone snapshot; no DB access.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional
from app.services.config_store import ZoneSnapshot

EARTH_RADIUS_M = 6_371_000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great circle distance between two points on the earth
    (specified in decimal degrees). Returns distance in meters.
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # min() guards asin against float drift just above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


@dataclass(frozen=True)
class MembershipResult:
    zone: Optional[ZoneSnapshot]       # matched zone, None when outside every zone
    distance_m: Optional[float]        # to the matched zone, else to the nearest zone

    @property
    def zone_code(self) -> Optional[str]:
        return self.zone.code if self.zone else None


def match(ping, zones: Iterable[ZoneSnapshot]) -> MembershipResult:
    """
    ping: anything with latitude/longitude (a LocationPing).
    A zone matches when distance <= radius. Several matches → nearest center;
    equal distance → smallest code, so the result never depends on zone order.
    """
    best_inside = None
    nearest = None
    for zone in zones:
        distance = haversine_distance(ping.latitude, ping.longitude, zone.latitude, zone.longitude)
        key = (distance, zone.code)
        if nearest is None or key < nearest[0]:
            nearest = (key, zone)
        if distance <= zone.radius_m and (best_inside is None or key < best_inside[0]):
            best_inside = (key, zone)

    if best_inside:
        (distance, _), zone = best_inside
        return MembershipResult(zone=zone, distance_m=distance)
    if nearest:
        return MembershipResult(zone=None, distance_m=nearest[0][0])
    return MembershipResult(zone=None, distance_m=None)
