"""Great-circle helpers.

City-scale approximations: no antimeridian or polar handling. NaN inputs
propagate to NaN outputs, so callers must check coordinates first.
"""
import math

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points in kilometres."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (math.sin(dlat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return distance_km(lat1, lng1, lat2, lng2) * 1000.0


def radius_for_viewport_km(viewport) -> float:
    """Rough search radius covering a viewport (largest span in degrees × 111 km)."""
    return max(viewport.lat_delta, viewport.lng_delta) * KM_PER_DEGREE
