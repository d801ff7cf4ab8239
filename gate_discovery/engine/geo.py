"""
Distance primitives. Every spatial comparison in the engine goes through
haversine_distance.
"""
import math
from typing import List, Sequence, Tuple

from gate_discovery.engine.errors import ComputationError

EARTH_RADIUS_METERS = 6_371_000.0
METERS_PER_DEGREE_LAT = 111_320.0

Point = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two GPS coordinates in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)
    
    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    # Rounding can push a a hair outside [0, 1] for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    
    return EARTH_RADIUS_METERS * c


def point_distance(a: Point, b: Point) -> float:
    return haversine_distance(a[0], a[1], b[0], b[1])


def centroid(points: Sequence[Point]) -> Point:
    """Arithmetic mean of latitude/longitude. Gates span meters, not continents."""
    if not points:
        raise ComputationError("Cannot compute the centroid of zero samples")
    lat = math.fsum(p[0] for p in points) / len(points)
    lon = math.fsum(p[1] for p in points) / len(points)
    return (lat, lon)


def distances_from(center: Point, points: Sequence[Point]) -> List[float]:
    return [point_distance(center, p) for p in points]


def location_spread(points: Sequence[Point]) -> float:
    """RMS distance (meters) of the points around their centroid; 0 for <2 points."""
    if len(points) < 2:
        return 0.0
    center = centroid(points)
    squared = [d * d for d in distances_from(center, points)]
    return math.sqrt(math.fsum(squared) / len(squared))


def meters_to_lat_degrees(meters: float) -> float:
    return meters / METERS_PER_DEGREE_LAT


def meters_to_lon_degrees(meters: float, latitude: float) -> float:
    cos_lat = math.cos(math.radians(min(89.9, abs(latitude))))
    return meters / (METERS_PER_DEGREE_LAT * cos_lat)
