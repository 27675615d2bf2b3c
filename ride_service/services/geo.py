"""
Great-circle helpers used for the rider/device proximity check.
"""
from math import radians, sin, cos, sqrt, atan2

from ride_service.errors import ValidationFailed

EARTH_RADIUS_M = 6_371_008.8


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two coordinates, in meters."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * atan2(sqrt(a), sqrt(1 - a))


def validate_coordinates(lat: float, lng: float) -> None:
    if not -90 <= lat <= 90:
        raise ValidationFailed("latitude must be between -90 and 90", {"latitude": lat})
    if not -180 <= lng <= 180:
        raise ValidationFailed("longitude must be between -180 and 180", {"longitude": lng})
