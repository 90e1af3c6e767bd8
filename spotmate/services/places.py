"""
Place and venue lookups.

``PlacesClient`` talks to the Google Places nearby-search endpoint.
``PlaceLookup`` adds the ~50 m ``place_cache`` in front of it for the
activity recorder; ``VenueResolver`` is the best-effort geocoder used when a
meeting point is picked. Neither ever raises to its caller.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.config import GEOCODER_TIMEOUT_SECONDS, GOOGLE_MAPS_API_KEY
from spotmate.core.match_config import DEFAULT_PLACE_TYPE, PLACE_CACHE_RADIUS_DEGREES, PRIORITY_PLACE_TYPES
from spotmate.models.activity import PlaceCache

PLACES_NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"


@dataclass
class PlaceDetails:
    place_id: Optional[str] = None
    place_name: Optional[str] = None
    place_type: str = DEFAULT_PLACE_TYPE
    types: List[str] = field(default_factory=list)
    lat: Optional[float] = None
    lng: Optional[float] = None


def pick_place_type(primary_type: Optional[str], types: List[str]) -> str:
    if primary_type:
        return primary_type
    for t in types:
        if t in PRIORITY_PLACE_TYPES:
            return t
    return types[0] if types else DEFAULT_PLACE_TYPE


class PlacesClient:
    def __init__(self, api_key: Optional[str] = GOOGLE_MAPS_API_KEY, client: Optional[httpx.Client] = None):
        self._api_key = api_key
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def search_nearby(self, lat: float, lng: float, radius_meters: float = 50.0) -> Optional[PlaceDetails]:
        """Raises httpx.HTTPError on transport or status failure."""
        if not self._api_key:
            return None

        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self._api_key,
            "X-Goog-FieldMask": "places.id,places.displayName,places.types,places.primaryType,places.location",
        }
        body = {
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": lat, "longitude": lng},
                    "radius": radius_meters,
                },
            },
            "maxResultCount": 1,
        }

        client = self._client or httpx.Client(timeout=GEOCODER_TIMEOUT_SECONDS)
        try:
            resp = client.post(PLACES_NEARBY_URL, headers=headers, json=body)
            resp.raise_for_status()
            data = resp.json()
        finally:
            if self._client is None:
                client.close()

        places = data.get("places") or []
        if not places:
            return None

        place = places[0]
        types = place.get("types") or []
        location = place.get("location") or {}
        return PlaceDetails(
            place_id=place.get("id"),
            place_name=(place.get("displayName") or {}).get("text"),
            place_type=pick_place_type(place.get("primaryType"), types),
            types=types,
            lat=location.get("latitude"),
            lng=location.get("longitude"),
        )


class PlaceLookup:
    """Place type for a visit, served from place_cache when a hit is within ~50m."""

    def __init__(self, client: Optional[PlacesClient] = None):
        self._client = client or PlacesClient()

    def lookup(self, db: Session, lat: float, lng: float) -> PlaceDetails:
        cached = self._from_cache(db, lat, lng)
        if cached:
            return cached

        try:
            place = self._client.search_nearby(lat, lng)
        except httpx.HTTPError as exc:
            logger.error(f"[geo] places lookup failed: {exc}")
            return PlaceDetails()

        if place is None:
            return PlaceDetails()

        if place.place_id:
            try:
                db.merge(
                    PlaceCache(
                        place_id=place.place_id,
                        place_name=place.place_name,
                        place_type=place.place_type,
                        types=place.types,
                        lat=lat,
                        lng=lng,
                        use_count=1,
                    )
                )
                db.commit()
                logger.debug(f"[geo] cached new place: {place.place_name}")
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning(f"[geo] place cache write failed: {exc}")

        return place

    def _from_cache(self, db: Session, lat: float, lng: float) -> Optional[PlaceDetails]:
        r = PLACE_CACHE_RADIUS_DEGREES
        rows = (
            db.query(PlaceCache)
            .filter(
                PlaceCache.lat >= lat - r,
                PlaceCache.lat <= lat + r,
                PlaceCache.lng >= lng - r,
                PlaceCache.lng <= lng + r,
            )
            .limit(5)
            .all()
        )
        if not rows:
            return None

        closest = min(rows, key=lambda p: math.hypot(lat - p.lat, lng - p.lng))
        if math.hypot(lat - closest.lat, lng - closest.lng) >= r:
            return None

        closest.use_count = (closest.use_count or 0) + 1
        db.commit()
        return PlaceDetails(
            place_id=closest.place_id,
            place_name=closest.place_name,
            place_type=closest.place_type,
            types=closest.types or [],
            lat=closest.lat,
            lng=closest.lng,
        )


class VenueResolver:
    def __init__(self, client: Optional[PlacesClient] = None):
        self._client = client or PlacesClient()

    def resolve(self, lat: float, lng: float) -> Optional[PlaceDetails]:
        try:
            venue = self._client.search_nearby(lat, lng, radius_meters=150.0)
        except httpx.HTTPError as exc:
            logger.error(f"[geo] venue geocode failed: {exc}")
            return None
        if venue is None or not venue.place_name:
            return None
        return venue
