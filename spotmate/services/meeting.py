from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional

from spotmate.core.match_config import DEFAULT_LANDMARK, DEFAULT_VENUE_NAME
from spotmate.services.geo import Coordinate, midpoint
from spotmate.services.places import VenueResolver

MEETING_EMOJIS = ["🎱", "☕", "🌿", "🪩", "🎨", "📚", "🎵", "🏃", "🧘", "🍕", "🌟", "🎯", "🌈", "⚡", "🔥"]

# (name keywords, venue types, landmark); first hit wins
LANDMARK_RULES = (
    (("dorm", "residence", "hall"), ("lodging", "housing"), "Main lobby entrance"),
    (("coffee", "cafe", "espresso"), ("cafe", "coffee_shop"), "Front entrance"),
    (("gym", "fitness", "recreation"), ("gym", "health"), "Check-in desk"),
    (("library",), ("library",), "Main entrance"),
    (("restaurant", "dining", "grill"), ("restaurant", "food"), "Host stand"),
    (("bar", "pub", "lounge"), ("bar", "night_club"), "Bar entrance"),
    (("park", "garden", "quad"), ("park",), "Main path entrance"),
    (("building", "center"), ("university", "school"), "Main entrance lobby"),
)


@dataclass
class MeetingDetails:
    venue_name: str
    landmark: str
    venue_lat: float
    venue_lng: float
    meet_code: str
    shared_emoji_code: str


def generate_contextual_landmark(venue_name: str, venue_types: Optional[List[str]] = None) -> str:
    name = venue_name.lower()
    types = [t.lower() for t in (venue_types or [])]
    for keywords, type_hits, landmark in LANDMARK_RULES:
        if any(k in name for k in keywords) or any(t in types for t in type_hits):
            return landmark
    return DEFAULT_LANDMARK


def generate_emoji_codes(rng: random.Random = random) -> str:
    return rng.choice(MEETING_EMOJIS) + rng.choice(MEETING_EMOJIS)


def generate_meet_code(rng: random.Random = random) -> str:
    return f"MEET{rng.randint(1000, 9999)}"


def build_meeting_details(a: Coordinate, b: Coordinate, resolver: VenueResolver) -> MeetingDetails:
    """Meeting point at the pair's midpoint; geocoding failure falls back to defaults."""
    mid = midpoint(a, b)
    venue_name = DEFAULT_VENUE_NAME
    landmark = DEFAULT_LANDMARK
    venue_lat, venue_lng = mid.lat, mid.lng

    venue = resolver.resolve(mid.lat, mid.lng)
    if venue is not None:
        venue_name = venue.place_name
        venue_lat = venue.lat if venue.lat is not None else mid.lat
        venue_lng = venue.lng if venue.lng is not None else mid.lng
        landmark = generate_contextual_landmark(venue_name, venue.types)

    return MeetingDetails(
        venue_name=venue_name,
        landmark=landmark,
        venue_lat=venue_lat,
        venue_lng=venue_lng,
        meet_code=generate_meet_code(),
        shared_emoji_code=generate_emoji_codes(),
    )
