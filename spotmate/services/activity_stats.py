from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy import or_
from sqlalchemy.orm import Session

from spotmate.core.match_config import PATTERN_WINDOW_DAYS, TOP_ACTIVITY_COUNT, WEEKLY_PRESENCE_DAYS
from spotmate.models.activity import ActivityPattern, LocationVisit
from spotmate.models.profile import Profile
from spotmate.modules.connections.models import Match
from spotmate.services.interests import interest_emoji
from spotmate.services.sessions import as_utc
from spotmate.services.timezones import day_type, local_time, time_of_day

PLACE_TYPE_EMOJI = (
    (("cafe", "coffee"), "☕"),
    (("gym",), "💪"),
    (("book", "library"), "📚"),
    (("park", "outdoor"), "🌲"),
    (("restaurant", "food"), "🍽️"),
    (("bar",), "🍺"),
    (("museum", "art"), "🎨"),
)

TIME_WINDOWS = {
    "morning": "8-12 AM",
    "afternoon": "12-6 PM",
    "evening": "6-10 PM",
}

CONNECTED_STATUSES = ("connected", "talking")


@dataclass
class ActivityStat:
    icon: str
    name: str
    frequency: str
    is_interest: bool


@dataclass
class DayPresence:
    day: int  # 0-6, Sunday first
    count: int = 0
    time_of_day: Dict[str, int] = field(default_factory=lambda: {"morning": 0, "afternoon": 0, "evening": 0})


@dataclass
class UserTrends:
    typical_time_window: str
    most_active_day: str
    connection_stats: str


def place_type_emoji(place_type: str) -> str:
    lowered = place_type.lower()
    for needles, emoji in PLACE_TYPE_EMOJI:
        if any(n in lowered for n in needles):
            return emoji
    return "📍"


def format_place_type(place_type: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in place_type.split("_"))


def visits_per_week(visit_count: int) -> str:
    # half rounds up
    return f"{int(visit_count * 7 / PATTERN_WINDOW_DAYS + 0.5)}×/week"


def _top_patterns(db: Session, user_id: str, limit: int) -> List[ActivityPattern]:
    return (
        db.query(ActivityPattern)
        .filter(ActivityPattern.user_id == user_id)
        .order_by(ActivityPattern.visit_count.desc(), ActivityPattern.id)
        .limit(limit)
        .all()
    )


def activity_stats(db: Session, user_id: str) -> List[ActivityStat]:
    """
    Interests first, each with a weekly frequency when one of the top
    patterns looks like it, then the remaining top patterns until the list
    holds ``TOP_ACTIVITY_COUNT`` entries.
    """
    profile = db.get(Profile, user_id)
    patterns = _top_patterns(db, user_id, TOP_ACTIVITY_COUNT)

    stats: List[ActivityStat] = []
    for interest in (profile.interests if profile else None) or []:
        match = next((p for p in patterns if interest.lower() in p.place_type.lower()), None)
        stats.append(
            ActivityStat(
                icon=interest_emoji(interest),
                name=interest,
                frequency=visits_per_week(match.visit_count) if match else "TBD",
                is_interest=True,
            )
        )

    for pattern in patterns:
        if len(stats) >= TOP_ACTIVITY_COUNT:
            break
        if any(s.name.lower() in pattern.place_type.lower() for s in stats):
            continue
        stats.append(
            ActivityStat(
                icon=place_type_emoji(pattern.place_type),
                name=format_place_type(pattern.place_type),
                frequency=visits_per_week(pattern.visit_count),
                is_interest=False,
            )
        )
    return stats


def weekly_presence(db: Session, user_id: str, now: Optional[datetime] = None) -> List[DayPresence]:
    """Visit counts over the last week, bucketed by local day of week and time of day."""
    now = as_utc(now or datetime.now(timezone.utc))
    visits = (
        db.query(LocationVisit)
        .filter(
            LocationVisit.user_id == user_id,
            LocationVisit.timestamp_utc >= now - timedelta(days=WEEKLY_PRESENCE_DAYS),
        )
        .all()
    )

    days = [DayPresence(day=i) for i in range(7)]
    for visit in visits:
        local = local_time(as_utc(visit.timestamp_utc), visit.user_timezone_at_event)
        bucket = days[(local.weekday() + 1) % 7]
        bucket.count += 1
        if visit.time_of_day in bucket.time_of_day:
            bucket.time_of_day[visit.time_of_day] += 1
    return days


def user_trends(db: Session, user_id: str, now: Optional[datetime] = None) -> UserTrends:
    top = _top_patterns(db, user_id, 1)
    if top:
        tod, day = top[0].time_of_day, top[0].day_type
    else:
        current = as_utc(now or datetime.now(timezone.utc))
        tod, day = time_of_day(current), day_type(current)

    venues = [
        row[0]
        for row in db.query(Match.venue_name)
        .filter(or_(Match.uid_a == user_id, Match.uid_b == user_id), Match.status.in_(CONNECTED_STATUSES))
        .all()
    ]
    if venues:
        at_cafes = sum(1 for v in venues if v and ("cafe" in v.lower() or "coffee" in v.lower()))
        connection_stats = f"{round(at_cafes * 100 / len(venues))}% of connections at cafés"
    else:
        connection_stats = "0 connections so far"

    logger.debug(f"[activity] trends | user={user_id} tod={tod} day={day} connections={len(venues)}")
    return UserTrends(
        typical_time_window=TIME_WINDOWS.get(tod, "Various times"),
        most_active_day="weekends" if day == "weekend" else "weekdays",
        connection_stats=connection_stats,
    )
