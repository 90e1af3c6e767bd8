"""
Nearby candidate lookup.

Candidates come from the requester's 9-cell geohash neighborhood, then are
hard-filtered on exact distance and on sharing at least one interest.
Survivors are scored; a scoring failure leaves the candidate unscored
rather than dropping it.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from spotmate.core.match_config import GEOHASH_PRECISION, MAX_MATCH_DISTANCE_METERS, NEARBY_POLL_SECONDS
from spotmate.models.profile import Profile
from spotmate.services.change_feed import ChangeEvent, ChangeFeed, change_feed
from spotmate.services.compatibility import CompatibilityError, WeightProfile, prepare_weight_profile, score_against
from spotmate.services.geo import Coordinate, distance_meters, get_geohash_neighbors, to_geohash
from spotmate.services.interests import common_interests

# (requester_id, target_id) -> 0..100, raises on failure
Scorer = Callable[[str, str], int]


@dataclass
class NearbyUser:
    id: str
    name: Optional[str]
    interests: List[str]
    lat: float
    lng: float
    distance: float
    shared_interests: List[str] = field(default_factory=list)
    emoji_signature: Optional[str] = None
    avatar_url: Optional[str] = None
    compatibility_score: Optional[int] = None


def nearby_sort_key(user: NearbyUser) -> Tuple[int, float, float]:
    # scored entries first by score desc, then the unscored; distance breaks ties
    if user.compatibility_score is None:
        return (1, 0.0, user.distance)
    return (0, -float(user.compatibility_score), user.distance)


def sort_nearby(users: List[NearbyUser]) -> List[NearbyUser]:
    return sorted(users, key=nearby_sort_key)


def default_scorer(db: Session) -> Scorer:
    """
    Scorer for one pass. The requester's weight profile is prepared on the
    first candidate and reused for the rest of the pass.
    """
    profiles: Dict[str, WeightProfile] = {}

    def _score(user_id: str, target_id: str) -> int:
        profile = profiles.get(user_id)
        if profile is None:
            profile = prepare_weight_profile(db, user_id)
            profiles[user_id] = profile
        return score_against(db, profile, target_id).score
    return _score


def find_nearby(
    db: Session,
    user_id: str,
    location: Optional[Coordinate],
    interests: Optional[List[str]],
    enabled: bool = True,
    scorer: Optional[Scorer] = None,
    max_distance_meters: float = MAX_MATCH_DISTANCE_METERS,
) -> List[NearbyUser]:
    """Raises SQLAlchemyError if the candidate query itself fails."""
    if not enabled or location is None or not interests:
        return []

    neighbors = get_geohash_neighbors(to_geohash(location.lat, location.lng, GEOHASH_PRECISION))

    profiles = (
        db.query(Profile)
        .filter(
            Profile.id != user_id,
            Profile.is_visible.is_(True),
            Profile.onboarded.is_(True),
            Profile.geohash.in_(neighbors),
        )
        .all()
    )

    score = scorer or default_scorer(db)
    nearby: List[NearbyUser] = []

    for p in profiles:
        if p.lat is None or p.lng is None or not p.interests:
            continue

        distance = distance_meters(location.lat, location.lng, p.lat, p.lng)
        if distance > max_distance_meters:
            continue

        shared = common_interests(interests, p.interests)
        if not shared:
            continue

        compatibility: Optional[int] = None
        try:
            compatibility = score(user_id, p.id)
        except (CompatibilityError, SQLAlchemyError) as exc:
            logger.warning(f"[nearby] compatibility unavailable | target={p.id} err={exc}")

        nearby.append(
            NearbyUser(
                id=p.id,
                name=p.name,
                interests=list(p.interests),
                lat=p.lat,
                lng=p.lng,
                distance=distance,
                shared_interests=shared,
                emoji_signature=p.emoji_signature,
                avatar_url=p.avatar_url,
                compatibility_score=compatibility,
            )
        )

    logger.debug(f"[nearby] user={user_id} candidates={len(profiles)} matched={len(nearby)}")
    return sort_nearby(nearby)


class NearbyWatcher:
    """
    Keeps a user's nearby list fresh.

    Refreshes on location change, on any presence change notification and
    on a fixed poll. Each refresh replaces the list wholesale; overlapping
    refreshes resolve last-write-wins. A failed refresh keeps the old list.
    """

    def __init__(
        self,
        user_id: str,
        session_factory: sessionmaker,
        feed: ChangeFeed = change_feed,
        poll_seconds: float = NEARBY_POLL_SECONDS,
        scorer_factory: Callable[[Session], Scorer] = default_scorer,
    ):
        self.user_id = user_id
        self.results: List[NearbyUser] = []
        self.enabled = True
        self._location: Optional[Coordinate] = None
        self._session_factory = session_factory
        self._feed = feed
        self._poll_seconds = poll_seconds
        self._scorer_factory = scorer_factory
        self._sub_id: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._refreshes: Set[asyncio.Task] = set()

    def update_location(self, location: Coordinate) -> List[NearbyUser]:
        self._location = location
        return self.refresh()

    def refresh(self) -> List[NearbyUser]:
        db = self._session_factory()
        try:
            me = db.get(Profile, self.user_id)
            interests = (me.interests if me else None) or []
            self.results = find_nearby(
                db,
                self.user_id,
                self._location,
                interests,
                enabled=self.enabled,
                scorer=self._scorer_factory(db),
            )
        except SQLAlchemyError as exc:
            logger.error(f"[nearby] refresh failed, keeping previous results | user={self.user_id} err={exc}")
        finally:
            db.close()
        return self.results

    def _on_change(self, evt: ChangeEvent) -> None:
        if evt.record.get("user_id") == self.user_id:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            # not started on a loop; the caller's thread does the work
            self.refresh()
            return
        # publishers may be on any thread; the query itself runs in the executor
        loop.call_soon_threadsafe(self._spawn_refresh)

    def _spawn_refresh(self) -> None:
        if not self.enabled or self._loop is None:
            return
        task = self._loop.create_task(asyncio.to_thread(self.refresh))
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    def subscribe(self) -> None:
        if self._sub_id is None:
            self._sub_id = self._feed.subscribe("presence", self._on_change)

    def start(self) -> None:
        """Subscribe to presence changes and start polling on the running loop."""
        self.enabled = True
        self._loop = asyncio.get_running_loop()
        self.subscribe()
        if self._task is None or self._task.done():
            self._task = self._loop.create_task(self._poll())

    def stop(self) -> None:
        self.enabled = False
        self.results = []
        if self._sub_id is not None:
            self._feed.unsubscribe(self._sub_id)
            self._sub_id = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for task in list(self._refreshes):
            task.cancel()
        self._refreshes.clear()
        self._loop = None

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self._poll_seconds)
            await asyncio.to_thread(self.refresh)


class NearbyRegistry:
    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed = change_feed):
        self._session_factory = session_factory
        self._feed = feed
        self._watchers: Dict[str, NearbyWatcher] = {}

    def get(self, user_id: str) -> Optional[NearbyWatcher]:
        return self._watchers.get(user_id)

    def watch(self, user_id: str) -> NearbyWatcher:
        watcher = self._watchers.get(user_id)
        if watcher is None:
            watcher = NearbyWatcher(user_id, self._session_factory, feed=self._feed)
            self._watchers[user_id] = watcher
        watcher.start()
        return watcher

    def unwatch(self, user_id: str) -> None:
        watcher = self._watchers.pop(user_id, None)
        if watcher is not None:
            watcher.stop()

    def shutdown(self) -> None:
        for watcher in self._watchers.values():
            watcher.stop()
        self._watchers.clear()
