from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, degrees, radians, sin, sqrt

EARTH_RADIUS_M = 6371000.0

# Below this separation (degrees, both axes) the flat-earth approximation is
# within centimeters of haversine.
APPROX_THRESHOLD_DEG = 0.01

# Pad applied to bounding boxes so approximate distances at the box edge are
# never pruned by the prefilter.
BBOX_PAD_RATIO = 1.001


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters using the haversine formula."""
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, a)))


def equirectangular_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Flat-earth distance in meters, scaled by the cosine of the mean latitude."""
    x = radians(lon2 - lon1) * cos(radians((lat1 + lat2) / 2))
    y = radians(lat2 - lat1)
    return EARTH_RADIUS_M * sqrt(x * x + y * y)


def _lon_delta(lon1: float, lon2: float) -> float:
    delta = abs(lon2 - lon1) % 360.0
    return 360.0 - delta if delta > 180.0 else delta


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two coordinates.

    Nearby pairs use the equirectangular approximation, everything else the
    exact haversine formula.
    """
    if abs(lat2 - lat1) < APPROX_THRESHOLD_DEG and _lon_delta(lon1, lon2) < APPROX_THRESHOLD_DEG:
        # Normalise so pairs straddling the antimeridian stay short.
        lon2 = lon1 + (lon2 - lon1 + 180.0) % 360.0 - 180.0
        return equirectangular_m(lat1, lon1, lat2, lon2)
    return haversine_m(lat1, lon1, lat2, lon2)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon rectangle.

    ``min_lon > max_lon`` means the box wraps across the antimeridian.
    """

    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    @classmethod
    def around_point(cls, lat: float, lon: float) -> BoundingBox:
        return cls(min_lat=lat, min_lon=lon, max_lat=lat, max_lon=lon)

    @property
    def wraps(self) -> bool:
        return self.min_lon > self.max_lon

    def split_antimeridian(self) -> list[BoundingBox]:
        """Return equivalent non-wrapping boxes (one, or two if the box wraps)."""
        if not self.wraps:
            return [self]
        return [
            BoundingBox(self.min_lat, self.min_lon, self.max_lat, 180.0),
            BoundingBox(self.min_lat, -180.0, self.max_lat, self.max_lon),
        ]

    def contains(self, lat: float, lon: float) -> bool:
        if not self.min_lat <= lat <= self.max_lat:
            return False
        if self.wraps:
            return lon >= self.min_lon or lon <= self.max_lon
        return self.min_lon <= lon <= self.max_lon

    def intersects(self, other: BoundingBox) -> bool:
        if self.min_lat > other.max_lat or other.min_lat > self.max_lat:
            return False
        return any(
            a.min_lon <= b.max_lon and b.min_lon <= a.max_lon
            for a in self.split_antimeridian()
            for b in other.split_antimeridian()
        )

    def expanded(self, margin_deg: float) -> BoundingBox:
        """Grow the box by ``margin_deg`` on every side."""
        if margin_deg <= 0:
            return self
        min_lat = max(-90.0, self.min_lat - margin_deg)
        max_lat = min(90.0, self.max_lat + margin_deg)
        if not self.wraps and self.max_lon - self.min_lon + 2 * margin_deg >= 360.0:
            return BoundingBox(min_lat, -180.0, max_lat, 180.0)
        return BoundingBox(
            min_lat,
            _wrap_lon(self.min_lon - margin_deg),
            max_lat,
            _wrap_lon(self.max_lon + margin_deg),
        )


def _wrap_lon(lon: float) -> float:
    if lon > 180.0:
        return lon - 360.0
    if lon < -180.0:
        return lon + 360.0
    return lon


def bounding_box_for_radius(lat: float, lon: float, radius_m: float) -> BoundingBox:
    """Smallest lat/lon box containing every point within ``radius_m`` of the center.

    Uses the exact longitude extent of a spherical cap, so the box is always a
    superset of the search circle. Caps touching a pole span all longitudes.
    """
    angular = radius_m * BBOX_PAD_RATIO / EARTH_RADIUS_M
    lat_r = radians(lat)
    min_lat_r = lat_r - angular
    max_lat_r = lat_r + angular

    half_pi = radians(90.0)
    if min_lat_r <= -half_pi or max_lat_r >= half_pi:
        return BoundingBox(
            min_lat=max(-90.0, degrees(min_lat_r)),
            min_lon=-180.0,
            max_lat=min(90.0, degrees(max_lat_r)),
            max_lon=180.0,
        )

    sin_ratio = sin(angular) / cos(lat_r)
    if sin_ratio >= 1.0:
        return BoundingBox(degrees(min_lat_r), -180.0, degrees(max_lat_r), 180.0)

    dlon = degrees(asin(sin_ratio))
    return BoundingBox(
        min_lat=degrees(min_lat_r),
        min_lon=_wrap_lon(lon - dlon),
        max_lat=degrees(max_lat_r),
        max_lon=_wrap_lon(lon + dlon),
    )
