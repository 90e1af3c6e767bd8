"""
Throttled presence publishing.

Raw location samples arrive at arbitrary times. Each one is scored,
deduplicated against the recent buffer, and either published right away
(first fix, enough displacement, or the motion-state interval elapsed) or
deferred behind a 30 s debounce timer. Only the newest buffered sample is
ever written, as a single upserted presence row per user.

All per-user throttle state lives in an explicit ``PublisherState`` owned
by one ``PresencePublisher``; nothing is kept in module globals except the
registry that maps user ids to publishers.
"""
from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Optional, Protocol

from loguru import logger
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from spotmate.core.db import session_scope
from spotmate.core.match_config import (
    ACCURACY_CONFIDENCE_TIERS,
    DEBOUNCE_SECONDS,
    DEDUP_DISTANCE_METERS,
    DEDUP_LOOKBACK,
    DEDUP_WINDOW_SECONDS,
    FAST_SPEED_PENALTY,
    FAST_SPEED_THRESHOLD,
    MIN_CONFIDENCE,
    MIN_DISPLACEMENT_METERS,
    MIN_INTERVAL_MOVING_SECONDS,
    MIN_INTERVAL_STATIONARY_SECONDS,
    PING_BUFFER_SIZE,
    STATIONARY_SPEED_THRESHOLD,
)
from spotmate.models.profile import Profile
from spotmate.services.change_feed import ChangeFeed, change_feed
from spotmate.services.geo import distance_meters, to_geohash


# ------------------------------------------------------------------
# State
# ------------------------------------------------------------------

@dataclass
class LocationSample:
    lat: float
    lng: float
    accuracy: float = 0.0       # meters, lower is better
    speed: Optional[float] = None  # m/s


@dataclass
class BufferedPing:
    sample: LocationSample
    timestamp: float
    confidence: float


@dataclass
class PublishedFix:
    lat: float
    lng: float
    timestamp: float


@dataclass
class PublisherState:
    user_id: str
    last_published: Optional[PublishedFix] = None
    buffer: Deque[BufferedPing] = field(default_factory=lambda: deque(maxlen=PING_BUFFER_SIZE))
    pending: Optional["TimerHandle"] = None
    enabled: bool = True
    publish_count: int = 0
    last_error: Optional[str] = None


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class _LoopTimer:
    """Debounce timer armed on a loop from any thread; fires into the executor."""

    def __init__(self, loop: asyncio.AbstractEventLoop, delay: float, callback: Callable[[], None]):
        self._loop = loop
        self._delay = delay
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def arm(self) -> None:
        if not self._cancelled:
            self._handle = self._loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        if not self._cancelled:
            # the callback writes to the database
            self._loop.run_in_executor(None, self._callback)

    def cancel(self) -> None:
        self._cancelled = True
        handle = self._handle
        if handle is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(handle.cancel)


class AsyncioScheduler:
    """
    Runs deferred publishes off an event loop. Safe to call from worker
    threads once bound; unbound, it uses the caller's running loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        timer = _LoopTimer(loop, delay, callback)
        loop.call_soon_threadsafe(timer.arm)
        return timer


# ------------------------------------------------------------------
# Pure decision helpers
# ------------------------------------------------------------------

def accuracy_confidence(accuracy: float) -> float:
    """Tiered confidence from GPS accuracy alone: <=20m is full confidence."""
    for threshold, multiplier in ACCURACY_CONFIDENCE_TIERS:
        if accuracy > threshold:
            return multiplier
    return 1.0


def compute_confidence(accuracy: float, speed: Optional[float]) -> float:
    confidence = accuracy_confidence(accuracy)
    if (speed or 0) > FAST_SPEED_THRESHOLD:
        confidence *= FAST_SPEED_PENALTY
    return max(MIN_CONFIDENCE, min(1.0, confidence))


def is_duplicate(state: PublisherState, sample: LocationSample, now: float) -> bool:
    recent = list(state.buffer)[-DEDUP_LOOKBACK:]
    for buffered in recent:
        distance = distance_meters(buffered.sample.lat, buffered.sample.lng, sample.lat, sample.lng)
        elapsed = abs(now - buffered.timestamp)
        if distance < DEDUP_DISTANCE_METERS and elapsed < DEDUP_WINDOW_SECONDS:
            return True
    return False


def publish_interval(sample: LocationSample) -> int:
    if (sample.speed or 0) < STATIONARY_SPEED_THRESHOLD:
        return MIN_INTERVAL_STATIONARY_SECONDS
    return MIN_INTERVAL_MOVING_SECONDS


def should_publish(state: PublisherState, sample: LocationSample, now: float) -> tuple[bool, str]:
    last = state.last_published
    if last is None:
        return True, "first"

    displacement = distance_meters(last.lat, last.lng, sample.lat, sample.lng)
    if displacement >= MIN_DISPLACEMENT_METERS:
        return True, "displacement"

    if now - last.timestamp >= publish_interval(sample):
        return True, "interval"

    return False, "throttled"


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------

_UPSERT_PRESENCE = text(
    """
    INSERT INTO presence (user_id, lat, lng, geohash, updated_at)
    VALUES (:user_id, :lat, :lng, :geohash, :updated_at)
    ON CONFLICT(user_id) DO UPDATE SET
        lat = excluded.lat,
        lng = excluded.lng,
        geohash = excluded.geohash,
        updated_at = excluded.updated_at
    """
).bindparams(bindparam("updated_at", type_=DateTime(timezone=True)))


class PresenceStore:
    """Writes the presence row and mirrors the fix onto the profile."""

    def __init__(self, session_factory: sessionmaker, feed: ChangeFeed = change_feed):
        self._session_factory = session_factory
        self._feed = feed

    def upsert(self, user_id: str, sample: LocationSample) -> str:
        geohash = to_geohash(sample.lat, sample.lng)
        now = datetime.now(timezone.utc)

        with session_scope(self._session_factory) as db:
            db.execute(
                _UPSERT_PRESENCE,
                {
                    "user_id": user_id,
                    "lat": sample.lat,
                    "lng": sample.lng,
                    "geohash": geohash,
                    "updated_at": now,
                },
            )
            db.query(Profile).filter(Profile.id == user_id).update(
                {
                    Profile.lat: sample.lat,
                    Profile.lng: sample.lng,
                    Profile.geohash: geohash,
                    Profile.location_accuracy: sample.accuracy,
                    Profile.location_updated_at: now,
                },
                synchronize_session=False,
            )

        self._feed.publish("presence", "update", {"user_id": user_id, "geohash": geohash})
        return geohash


# ------------------------------------------------------------------
# Publisher
# ------------------------------------------------------------------

class PresencePublisher:
    """
    Samples may arrive on worker threads and the debounce flush runs in the
    executor, so every state transition holds the publisher's lock.
    """

    def __init__(
        self,
        user_id: str,
        store: PresenceStore,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = PublisherState(user_id=user_id)
        self._store = store
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock
        self._lock = threading.RLock()

    def handle_sample(self, sample: LocationSample) -> str:
        """Returns one of: disabled, duplicate, published, failed, deferred."""
        with self._lock:
            state = self.state
            if not state.enabled:
                return "disabled"

            now = self._clock()
            if is_duplicate(state, sample, now):
                logger.debug(f"[presence] duplicate ping dropped | user={state.user_id}")
                return "duplicate"

            state.buffer.append(
                BufferedPing(sample=sample, timestamp=now, confidence=compute_confidence(sample.accuracy, sample.speed))
            )

            self._cancel_pending()

            publish_now, reason = should_publish(state, sample, now)
            if publish_now:
                return "published" if self.flush(reason) else "failed"

            state.pending = self._scheduler.call_later(DEBOUNCE_SECONDS, self._on_debounce)
            return "deferred"

    def flush(self, reason: str = "manual") -> bool:
        with self._lock:
            state = self.state
            if not state.buffer:
                return False

            latest = state.buffer[-1]
            try:
                geohash = self._store.upsert(state.user_id, latest.sample)
            except SQLAlchemyError as exc:
                # baseline stays put so the next sample retries against it
                state.last_error = str(exc)
                logger.error(f"[presence] publish failed | user={state.user_id} reason={reason} err={exc}")
                return False

            avg_confidence = sum(p.confidence for p in state.buffer) / len(state.buffer)
            logger.info(
                f"[presence] published | user={state.user_id} reason={reason} "
                f"pings={len(state.buffer)} avg_conf={avg_confidence:.2f} geohash={geohash}"
            )

            state.last_published = PublishedFix(lat=latest.sample.lat, lng=latest.sample.lng, timestamp=self._clock())
            state.buffer.clear()
            state.publish_count += 1
            state.last_error = None
            return True

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            with self._lock:
                self.state.enabled = True
            return
        self.teardown()

    def teardown(self) -> None:
        """Cancel the debounce timer and flush whatever is still buffered."""
        with self._lock:
            self._cancel_pending()
            if self.state.buffer:
                self.flush("teardown")
            self.state.enabled = False

    def status(self) -> dict:
        with self._lock:
            state = self.state
            last = state.last_published
            return {
                "user_id": state.user_id,
                "enabled": state.enabled,
                "buffered": len(state.buffer),
                "pending_publish": state.pending is not None,
                "publish_count": state.publish_count,
                "last_published": None if last is None else {"lat": last.lat, "lng": last.lng, "timestamp": last.timestamp},
                "last_error": state.last_error,
            }

    def _cancel_pending(self) -> None:
        if self.state.pending is not None:
            self.state.pending.cancel()
            self.state.pending = None

    def _on_debounce(self) -> None:
        with self._lock:
            self.state.pending = None
            self.flush("debounce")


class PresenceRegistry:
    """One publisher per user for the lifetime of the process."""

    def __init__(self, store_factory: Callable[[], PresenceStore], scheduler: Optional[Scheduler] = None,
                 clock: Callable[[], float] = time.time):
        self._store_factory = store_factory
        self._scheduler = scheduler
        self._clock = clock
        self._publishers: Dict[str, PresencePublisher] = {}

    def get(self, user_id: str) -> PresencePublisher:
        pub = self._publishers.get(user_id)
        if pub is None:
            pub = PresencePublisher(user_id, self._store_factory(), scheduler=self._scheduler, clock=self._clock)
            self._publishers[user_id] = pub
        return pub

    def shutdown(self) -> None:
        for pub in self._publishers.values():
            pub.teardown()
        self._publishers.clear()
