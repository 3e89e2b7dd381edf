"""Shared utility functions for RideAI.

Coordinate handling used by the heuristic model, the fallback values and
the directions adapter.
"""

import math
from typing import Any, Optional

EARTH_RADIUS_KM = 6371.0


def coerce_point(value: Any) -> Optional[tuple[float, float]]:
    """Read a coordinate as ``(lat, lng)``.

    Accepts ``{"lat": .., "lng": ..}`` (also ``lon``/``longitude``/``latitude``)
    or a ``[lng, lat]`` pair, the GeoJSON order used by map providers.

    Returns:
        (lat, lng) tuple, or None if the value is not a usable coordinate.
    """
    try:
        if isinstance(value, dict):
            lat = value.get("lat", value.get("latitude"))
            lng = value.get("lng", value.get("lon", value.get("longitude")))
            if lat is None or lng is None:
                return None
            lat, lng = float(lat), float(lng)
        elif isinstance(value, (list, tuple)) and len(value) == 2:
            lng, lat = float(value[0]), float(value[1])
        else:
            return None
    except (TypeError, ValueError):
        return None

    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return lat, lng


def haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lng) points in kilometers."""
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def parse_hours(value: Any, default: int = 24) -> int:
    """Hours in a window string such as ``"6h"``, ``"24h"`` or ``"7d"``."""
    text = str(value or "").strip().lower()
    try:
        if text.endswith("h"):
            return max(1, int(text[:-1]))
        if text.endswith("d"):
            return max(1, int(text[:-1]) * 24)
        if text.endswith("w"):
            return max(1, int(text[:-1]) * 24 * 7)
        return max(1, int(text))
    except ValueError:
        return default


def as_number(value: Any) -> Optional[float]:
    """Float value of a payload field, or None if missing or non-numeric."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number
