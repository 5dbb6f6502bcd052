"""
Geo Verifier Module - UniMark Geofenced Attendance System

Great-circle distance and geofence containment on a spherical Earth model.

Features:
- Immutable, validated latitude/longitude coordinates
- Haversine distance in meters
- Inclusive radius containment that treats a missing location as "outside"
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from unimark.modules.exceptions import InvalidCoordinate

EARTH_RADIUS_METERS = 6371000.0


@dataclass(frozen=True)
class Coordinate:
    """A (latitude, longitude) pair in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        try:
            latitude = float(self.latitude)
            longitude = float(self.longitude)
        except (TypeError, ValueError):
            raise InvalidCoordinate(f"Coordinate values must be numeric: ({self.latitude!r}, {self.longitude!r})")

        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            raise InvalidCoordinate(f"Coordinate values must be finite: ({latitude}, {longitude})")
        if not -90.0 <= latitude <= 90.0:
            raise InvalidCoordinate(f"Latitude out of range [-90, 90]: {latitude}")
        if not -180.0 <= longitude <= 180.0:
            raise InvalidCoordinate(f"Longitude out of range [-180, 180]: {longitude}")

        object.__setattr__(self, 'latitude', latitude)
        object.__setattr__(self, 'longitude', longitude)

    def to_dict(self) -> Dict[str, float]:
        return {'latitude': self.latitude, 'longitude': self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Coordinate':
        return cls(data['latitude'], data['longitude'])


def haversine_distance(a: Coordinate, b: Coordinate,
                       earth_radius: float = EARTH_RADIUS_METERS) -> float:
    """
    Great-circle distance between two coordinates.

    Args:
        a (Coordinate): First point
        b (Coordinate): Second point
        earth_radius (float): Sphere radius in meters

    Returns:
        float: Distance in meters
    """
    lat_a = math.radians(a.latitude)
    lat_b = math.radians(b.latitude)
    dlat = lat_b - lat_a
    dlon = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat_a) * math.cos(lat_b) * math.sin(dlon / 2) ** 2
    # Rounding can push h a hair outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * earth_radius * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class GeoVerifier:
    """Decides whether an observed coordinate lies inside a circular geofence."""

    def __init__(self, earth_radius_meters: float = EARTH_RADIUS_METERS):
        self.earth_radius_meters = earth_radius_meters

    def distance_meters(self, a: Coordinate, b: Coordinate) -> float:
        return haversine_distance(a, b, self.earth_radius_meters)

    def is_within_radius(self, observed: Optional[Coordinate], reference: Coordinate,
                         radius_meters: float) -> bool:
        """
        Check geofence containment.

        Args:
            observed (Coordinate): Device location, or None when unavailable
            reference (Coordinate): Geofence center
            radius_meters (float): Geofence radius

        Returns:
            bool: True when the observed point is within the radius (inclusive)
        """
        if observed is None:
            return False
        return self.distance_meters(observed, reference) <= radius_meters
