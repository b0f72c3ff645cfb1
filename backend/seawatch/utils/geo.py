"""Shared geodesic and temporal distance utilities.

Canonical haversine implementation used by the similarity scorer and the
record model's coordinate validation.
"""
from __future__ import annotations

import math
from datetime import datetime

_EARTH_RADIUS_KM: float = 6371.0  # Earth mean radius in kilometres


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return _EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_valid_coordinate(lat: float | None, lon: float | None) -> bool:
    """True when both values are numbers in WGS-84 range and not the (0, 0) null island."""
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        return False
    # (0, 0) is what most feeds emit for "unknown position"
    if lat == 0 and lon == 0:
        return False
    return True


def hours_between(a: datetime, b: datetime) -> float:
    """Absolute difference between two aware datetimes, in hours."""
    return abs((a - b).total_seconds()) / 3600
