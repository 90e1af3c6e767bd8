"""
Visit sessionization.

Visits are rate-limited samples of where someone was. A session collapses a
run of consecutive visits at one place, with no gap longer than the
threshold, into a single stay with a dwell time. A run only becomes a
session once it is closed (nothing recorded within the gap before ``now``),
and only visits after the user's latest session are considered, so repeated
runs never count a visit twice.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.match_config import MAX_MATCH_DISTANCE_METERS, SESSION_GAP_MINUTES, SESSION_LOOKBACK_HOURS
from spotmate.models.activity import LocationSession, LocationVisit
from spotmate.services.geo import distance_meters, to_geohash


def as_utc(ts: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored as UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def same_place(anchor: LocationVisit, visit: LocationVisit) -> bool:
    if anchor.place_id and visit.place_id:
        return anchor.place_id == visit.place_id
    if anchor.place_type != visit.place_type:
        return False
    return distance_meters(anchor.lat, anchor.lng, visit.lat, visit.lng) <= MAX_MATCH_DISTANCE_METERS


def group_visits(visits: List[LocationVisit], gap_minutes: int = SESSION_GAP_MINUTES) -> List[List[LocationVisit]]:
    """Split time-ordered visits into runs at one place with no oversized gap."""
    gap = timedelta(minutes=gap_minutes)
    runs: List[List[LocationVisit]] = []
    for visit in visits:
        if runs:
            run = runs[-1]
            close_enough = as_utc(visit.timestamp_utc) - as_utc(run[-1].timestamp_utc) <= gap
            if close_enough and same_place(run[0], visit):
                run.append(visit)
                continue
        runs.append([visit])
    return runs


def build_session(run: List[LocationVisit]) -> LocationSession:
    first, last = run[0], run[-1]
    start, end = as_utc(first.timestamp_utc), as_utc(last.timestamp_utc)
    lat = sum(v.lat for v in run) / len(run)
    lng = sum(v.lng for v in run) / len(run)
    return LocationSession(
        user_id=first.user_id,
        lat=lat,
        lng=lng,
        geohash=to_geohash(lat, lng),
        place_id=first.place_id,
        place_name=first.place_name,
        place_type=first.place_type,
        start_ts=start,
        end_ts=end,
        dwell_min=int(round((end - start).total_seconds() / 60)),
        visit_count=len(run),
        time_of_day=first.time_of_day,
        day_type=first.day_type,
        confidence=sum(v.confidence for v in run) / len(run),
        user_timezone=first.user_timezone_at_event,
    )


def _sessionize_user(db: Session, user_id: str, since: datetime, gap_minutes: int, now: datetime) -> int:
    last_end = db.query(func.max(LocationSession.end_ts)).filter(LocationSession.user_id == user_id).scalar()
    if last_end is not None:
        since = max(since, as_utc(last_end))

    visits = (
        db.query(LocationVisit)
        .filter(LocationVisit.user_id == user_id, LocationVisit.timestamp_utc > since)
        .order_by(LocationVisit.timestamp_utc, LocationVisit.id)
        .all()
    )

    closed_before = now - timedelta(minutes=gap_minutes)
    created = 0
    for run in group_visits(visits, gap_minutes):
        if as_utc(run[-1].timestamp_utc) > closed_before:
            # still open; a later pass picks it up whole
            break
        db.add(build_session(run))
        created += 1
    return created


def sessionize_recent_visits(
    db: Session,
    user_id: Optional[str] = None,
    gap_minutes: int = SESSION_GAP_MINUTES,
    lookback_hours: int = SESSION_LOOKBACK_HOURS,
    now: Optional[datetime] = None,
) -> int:
    """
    Create sessions from recent visits for one user, or for everyone with a
    visit in the lookback window when ``user_id`` is None. Returns the
    number of sessions created. Raises SQLAlchemyError after rolling back.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    since = now - timedelta(hours=lookback_hours)

    try:
        if user_id is None:
            user_ids = [
                row[0]
                for row in db.query(LocationVisit.user_id)
                .filter(LocationVisit.timestamp_utc > since)
                .distinct()
                .all()
            ]
        else:
            user_ids = [user_id]

        created = 0
        for uid in user_ids:
            created += _sessionize_user(db, uid, since, gap_minutes, now)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[activity] sessionize failed | user={user_id or '*'} err={exc}")
        raise

    logger.info(f"[activity] sessionized | user={user_id or '*'} users={len(user_ids)} sessions={created}")
    return created
