# utils/geo.py
import math
from typing import Optional, Tuple

EARTH_RADIUS_KM = 6371.0


def _round2(x: float) -> float:
    # half-up on the scaled value; NaN/inf pass through untouched
    if not math.isfinite(x):
        return x
    return math.floor(x * 100 + 0.5) / 100


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometres between two (lat, lon) points given
    in degrees, using the haversine formula. Rounded to 2 decimals.
    """
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlon / 2) ** 2
    if a > 1.0:  # fp drift near antipodes
        a = 1.0
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return _round2(EARTH_RADIUS_KM * c)


def viewer_position(lat: Optional[float], lon: Optional[float]) -> Optional[Tuple[float, float]]:
    """(lat, lon) when both halves are known, else None."""
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)
