"""
Great-circle distance between [longitude, latitude] points.
"""

import math
from typing import Sequence

from agapay.core.errors import ValidationError
from agapay.core.settings import settings

EARTH_RADIUS_KM = 6371.0


def validate_coordinates(point: Sequence[float], field: str = "coordinates") -> tuple:
    """Return (lon, lat) as floats or raise ValidationError."""
    try:
        lon, lat = float(point[0]), float(point[1])
    except (TypeError, ValueError, IndexError):
        raise ValidationError("Invalid coordinates", {field: "expected [longitude, latitude]"})
    if len(point) != 2:
        raise ValidationError("Invalid coordinates", {field: "expected [longitude, latitude]"})
    if not -180.0 <= lon <= 180.0:
        raise ValidationError("Invalid coordinates", {field: "longitude must be within [-180, 180]"})
    if not -90.0 <= lat <= 90.0:
        raise ValidationError("Invalid coordinates", {field: "latitude must be within [-90, 90]"})
    return lon, lat


def distance_km(point_a: Sequence[float], point_b: Sequence[float]) -> float:
    """
    Haversine distance in kilometres.

    Symmetric and non-negative; identical points give exactly 0.0.
    """
    lon1, lat1 = validate_coordinates(point_a, "point_a")
    lon2, lat2 = validate_coordinates(point_b, "point_b")
    if lon1 == lon2 and lat1 == lat2:
        return 0.0

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Clamp against rounding pushing a slightly outside [0, 1]
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def estimate_road_distance(direct_km: float, factor: float = None) -> float:
    """
    Rough road distance: straight-line distance times a fixed factor (1.3).

    An approximation for display only; no routing is performed.
    """
    if factor is None:
        factor = settings.ROAD_DISTANCE_FACTOR
    return direct_km * factor
