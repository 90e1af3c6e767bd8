"""
Rate-limited recording of location visits into the behavioral model.

At most one visit per user every RECORD_INTERVAL_SECONDS. Each visit is
stamped in UTC with the timezone label resolved for the coordinate, and the
matching ActivityPattern aggregate is bumped in the same transaction, along
with the profile's activity fingerprint (a per-pattern summary keyed
"{place_type}_{time_of_day}_{day_type}").
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from spotmate.core.db import session_scope
from spotmate.core.match_config import RECORD_INTERVAL_SECONDS, TIMEZONE_REFRESH_DEGREES
from spotmate.models.activity import ActivityPattern, LocationVisit
from spotmate.models.profile import Profile
from spotmate.services.places import PlaceLookup
from spotmate.services.presence_publisher import LocationSample, accuracy_confidence
from spotmate.services.timezones import TimezoneResolver, day_type, local_time, time_of_day


@dataclass
class RecordedVisit:
    user_id: str
    place_type: str
    place_name: Optional[str]
    time_of_day: str
    day_type: str
    confidence: float
    timezone: str
    timestamp_utc: datetime


@dataclass
class RecorderState:
    last_recorded_at: Optional[float] = None
    tz_lat: Optional[float] = None
    tz_lng: Optional[float] = None
    tz_name: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


def recalculate_frequency_scores(db: Session, user_id: str) -> None:
    patterns = db.query(ActivityPattern).filter(ActivityPattern.user_id == user_id).all()
    total = sum(p.visit_count for p in patterns)
    for p in patterns:
        p.frequency_score = (p.visit_count / total) if total else 0.0


def apply_visit_to_patterns(db: Session, visit: LocationVisit) -> ActivityPattern:
    pattern = (
        db.query(ActivityPattern)
        .filter(
            ActivityPattern.user_id == visit.user_id,
            ActivityPattern.place_type == visit.place_type,
            ActivityPattern.time_of_day == visit.time_of_day,
            ActivityPattern.day_type == visit.day_type,
        )
        .first()
    )
    if pattern is None:
        pattern = ActivityPattern(
            user_id=visit.user_id,
            place_type=visit.place_type,
            time_of_day=visit.time_of_day,
            day_type=visit.day_type,
            visit_count=0,
            frequency_score=0.0,
        )
        db.add(pattern)

    pattern.visit_count += 1
    pattern.last_visit_at = visit.timestamp_utc
    db.flush()
    recalculate_frequency_scores(db, visit.user_id)
    return pattern


def fingerprint_key(place_type: str, tod: str, day: str) -> str:
    return f"{place_type}_{tod}_{day}"


def build_activity_fingerprint(patterns: Iterable[ActivityPattern]) -> Dict[str, dict]:
    return {
        fingerprint_key(p.place_type, p.time_of_day, p.day_type): {
            "visit_count": p.visit_count,
            "frequency_score": p.frequency_score,
            "last_visit": p.last_visit_at.isoformat() if p.last_visit_at else None,
        }
        for p in patterns
    }


def refresh_activity_fingerprint(db: Session, user_id: str) -> Dict[str, dict]:
    """Rebuild the profile's fingerprint from its patterns; no-op without a profile."""
    db.flush()
    patterns = db.query(ActivityPattern).filter(ActivityPattern.user_id == user_id).all()
    fingerprint = build_activity_fingerprint(patterns)
    db.query(Profile).filter(Profile.id == user_id).update(
        {Profile.activity_fingerprint: fingerprint},
        synchronize_session=False,
    )
    return fingerprint


class ActivityRecorder:
    def __init__(
        self,
        session_factory: sessionmaker,
        timezone_resolver: Optional[TimezoneResolver] = None,
        place_lookup: Optional[PlaceLookup] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._tz = timezone_resolver or TimezoneResolver()
        self._places = place_lookup or PlaceLookup()
        self._clock = clock
        self._states: Dict[str, RecorderState] = {}
        self._states_lock = threading.Lock()

    def _state(self, user_id: str) -> RecorderState:
        with self._states_lock:
            return self._states.setdefault(user_id, RecorderState())

    def maybe_record(self, user_id: str, sample: LocationSample, enabled: bool = True) -> Optional[RecordedVisit]:
        """Record a visit unless disabled, rate-limited or already in flight."""
        if not enabled:
            return None

        state = self._state(user_id)
        if not state.lock.acquire(blocking=False):
            logger.debug(f"[activity] record already in flight | user={user_id}")
            return None

        try:
            now = self._clock()
            if state.last_recorded_at is not None and now - state.last_recorded_at < RECORD_INTERVAL_SECONDS:
                return None

            tz_name = self._timezone_for(state, sample.lat, sample.lng)
            confidence = accuracy_confidence(sample.accuracy)

            try:
                recorded = self.record_visit(user_id, sample.lat, sample.lng, confidence, tz_name)
            except SQLAlchemyError as exc:
                logger.error(f"[activity] record failed | user={user_id} err={exc}")
                return None

            state.last_recorded_at = now
            logger.info(
                f"[activity] logged | user={user_id} tz={tz_name} place={recorded.place_type} "
                f"confidence={confidence:.2f}"
            )
            return recorded
        finally:
            state.lock.release()

    def record_visit(
        self,
        user_id: str,
        lat: float,
        lng: float,
        confidence: float,
        tz_name: str,
        timestamp_utc: Optional[datetime] = None,
    ) -> RecordedVisit:
        ts = timestamp_utc or datetime.now(timezone.utc)
        local = local_time(ts, tz_name)

        with session_scope(self._session_factory) as db:
            place = self._places.lookup(db, lat, lng)
            visit = LocationVisit(
                user_id=user_id,
                lat=lat,
                lng=lng,
                place_id=place.place_id,
                place_name=place.place_name,
                place_type=place.place_type,
                types=place.types,
                time_of_day=time_of_day(local),
                day_type=day_type(local),
                confidence=confidence,
                timestamp_utc=ts,
                user_timezone_at_event=tz_name,
            )
            db.add(visit)
            apply_visit_to_patterns(db, visit)
            refresh_activity_fingerprint(db, user_id)

        return RecordedVisit(
            user_id=user_id,
            place_type=place.place_type,
            place_name=place.place_name,
            time_of_day=time_of_day(local),
            day_type=day_type(local),
            confidence=confidence,
            timezone=tz_name,
            timestamp_utc=ts,
        )

    def _timezone_for(self, state: RecorderState, lat: float, lng: float) -> str:
        moved = (
            state.tz_name is None
            or abs(state.tz_lat - lat) > TIMEZONE_REFRESH_DEGREES
            or abs(state.tz_lng - lng) > TIMEZONE_REFRESH_DEGREES
        )
        if moved:
            state.tz_name = self._tz.resolve(lat, lng)
            state.tz_lat, state.tz_lng = lat, lng
        return state.tz_name or "UTC"
