"""
Geospatial helpers for proximity matching.

Geohash cells are only an index key for coarse candidate lookup; exact
distance always comes from the Haversine formula.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import geohash2

from spotmate.core.match_config import EARTH_RADIUS_METERS, GEOHASH_PRECISION

METERS_PER_DEGREE_LAT = 111320


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90 <= self.lat <= 90:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180 <= self.lng <= 180:
            raise ValueError(f"longitude out of range: {self.lng}")


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float


def to_geohash(lat: float, lng: float, precision: int = GEOHASH_PRECISION) -> str:
    return geohash2.encode(lat, lng, precision=precision)


def from_geohash(geohash: str) -> Coordinate:
    """Center of the geohash cell."""
    lat, lng, _, _ = geohash2.decode_exactly(geohash)
    return Coordinate(lat=lat, lng=lng)


def _wrap_lng(lng: float) -> float:
    return ((lng + 180) % 360) - 180


def get_geohash_neighbors(geohash: str) -> set[str]:
    """
    The cell itself plus its 8 adjacent cells at the same precision.

    Near the poles the north/south neighbors collapse onto existing cells,
    so fewer than 9 distinct hashes may come back there.
    """
    precision = len(geohash)
    lat, lng, lat_err, lng_err = geohash2.decode_exactly(geohash)

    cells = {geohash}
    for dlat in (-1, 0, 1):
        for dlng in (-1, 0, 1):
            if dlat == 0 and dlng == 0:
                continue
            n_lat = lat + dlat * 2 * lat_err
            if n_lat > 90 or n_lat < -90:
                continue
            n_lng = _wrap_lng(lng + dlng * 2 * lng_err)
            cells.add(geohash2.encode(n_lat, n_lng, precision=precision))
    return cells


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_within_distance(a: Coordinate, b: Coordinate, max_distance_meters: float) -> bool:
    return distance_meters(a.lat, a.lng, b.lat, b.lng) <= max_distance_meters


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def get_bounds(center: Coordinate, radius_meters: float) -> Bounds:
    lat_delta = radius_meters / METERS_PER_DEGREE_LAT
    lng_delta = radius_meters / (METERS_PER_DEGREE_LAT * math.cos(math.radians(center.lat)))
    return Bounds(
        min_lat=center.lat - lat_delta,
        max_lat=center.lat + lat_delta,
        min_lng=center.lng - lng_delta,
        max_lng=center.lng + lng_delta,
    )


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    # plain average; pairs are at most a few hundred meters apart
    return Coordinate(lat=(a.lat + b.lat) / 2, lng=(a.lng + b.lng) / 2)


def generate_pair_id(user_a: str, user_b: str) -> str:
    """Order-independent id for an unordered user pair."""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}_{high}"


def pair_low_high(a, b) -> tuple[str, str]:
    a_str = str(a)
    b_str = str(b)
    return (a_str, b_str) if a_str < b_str else (b_str, a_str)
