import asyncio
import math
import threading

import pytest
from sqlalchemy.exc import SQLAlchemyError

from spotmate.core.db import SessionLocal
from spotmate.models.presence import Presence
from spotmate.models.profile import Profile
from spotmate.services.geo import to_geohash
from spotmate.services.presence_publisher import (
    AsyncioScheduler,
    LocationSample,
    PresencePublisher,
    PresenceStore,
    compute_confidence,
)

METERS_PER_DEG = 6371000 * math.pi / 180
BASE = (35.994, -78.899)


def north(meters, lat=BASE[0], lng=BASE[1]):
    return LocationSample(lat=lat + meters / METERS_PER_DEG, lng=lng, accuracy=10, speed=0)


class RecordingStore:
    def __init__(self):
        self.writes = []
        self.fail = False

    def upsert(self, user_id, sample):
        if self.fail:
            raise SQLAlchemyError("write refused")
        self.writes.append((user_id, sample))
        return "dnruq0"


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def publisher(store, scheduler, clock):
    return PresencePublisher("u1", store, scheduler=scheduler, clock=clock)


@pytest.mark.parametrize(
    "accuracy,speed,expected",
    [
        (5, 0, 1.0),
        (20, 0, 1.0),
        (30, 0, 0.9),
        (75, None, 0.7),
        (150, 0, 0.5),
        (10, 6, 0.8),
        (150, 6, 0.4),
    ],
)
def test_confidence_tiers(accuracy, speed, expected):
    assert compute_confidence(accuracy, speed) == pytest.approx(expected)


def test_confidence_is_clamped():
    assert 0.1 <= compute_confidence(10_000, 100) <= 1.0


def test_first_sample_publishes_immediately(publisher, store):
    assert publisher.handle_sample(north(0)) == "published"
    assert len(store.writes) == 1
    assert publisher.state.last_published is not None
    assert len(publisher.state.buffer) == 0


def test_close_quick_followup_is_not_published_immediately(publisher, store, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(10)

    outcome = publisher.handle_sample(north(5))

    assert outcome in ("duplicate", "deferred")
    assert len(store.writes) == 1


def test_duplicate_within_buffer_is_dropped(publisher, store, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(5)
    assert publisher.handle_sample(north(15)) == "deferred"

    clock.advance(10)
    assert publisher.handle_sample(north(20)) == "duplicate"
    assert len(publisher.state.buffer) == 1


def test_stationary_samples_publish_on_interval(publisher, store, clock):
    for _ in range(4):
        assert publisher.handle_sample(north(0)) == "published"
        clock.advance(181)
    assert len(store.writes) == 4


def test_stationary_sample_under_interval_is_deferred(publisher, store, clock):
    publisher.handle_sample(north(0))
    clock.advance(120)
    assert publisher.handle_sample(north(0)) == "deferred"


def test_moving_interval_is_shorter(publisher, store, clock):
    publisher.handle_sample(north(0))
    clock.advance(61)
    moving = north(3)
    moving.speed = 2.0
    assert publisher.handle_sample(moving) == "published"


def test_displacement_publishes(publisher, store, clock):
    publisher.handle_sample(north(0))
    clock.advance(2)
    assert publisher.handle_sample(north(30)) == "published"
    assert store.writes[-1][1].lat == pytest.approx(north(30).lat)


def test_debounce_keeps_single_pending_timer(publisher, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(40)
    publisher.handle_sample(north(12))
    clock.advance(40)
    publisher.handle_sample(north(0))

    assert len(scheduler.active) == 1
    assert scheduler.active[0].delay == 30


def test_debounce_timer_publishes_latest_buffered(publisher, store, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(40)
    publisher.handle_sample(north(12))
    clock.advance(40)
    publisher.handle_sample(north(24))

    scheduler.fire_all()

    assert len(store.writes) == 2
    assert store.writes[-1][1].lat == pytest.approx(north(24).lat)
    assert publisher.state.pending is None
    assert len(publisher.state.buffer) == 0


def test_immediate_publish_cancels_pending_timer(publisher, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(40)
    publisher.handle_sample(north(12))
    handle = publisher.state.pending

    clock.advance(5)
    publisher.handle_sample(north(60))

    assert handle.cancelled
    assert publisher.state.pending is None


def test_teardown_flushes_buffer_and_cancels_timer(publisher, store, scheduler, clock):
    publisher.handle_sample(north(0))
    clock.advance(40)
    publisher.handle_sample(north(12))

    publisher.set_enabled(False)

    assert len(store.writes) == 2
    assert scheduler.active == []
    assert publisher.handle_sample(north(100)) == "disabled"


def test_failed_write_keeps_baseline(publisher, store, clock):
    publisher.handle_sample(north(0))
    baseline = publisher.state.last_published

    store.fail = True
    clock.advance(5)
    assert publisher.handle_sample(north(50)) == "failed"
    assert publisher.state.last_published == baseline
    assert publisher.status()["last_error"]

    store.fail = False
    clock.advance(5)
    assert publisher.handle_sample(north(80)) == "published"
    assert publisher.status()["last_error"] is None


def test_buffer_is_bounded(publisher, store, clock):
    store.fail = True
    for i in range(15):
        clock.advance(31)
        publisher.handle_sample(north(i * 40))
    assert len(publisher.state.buffer) == 10


def test_presence_store_upserts_and_mirrors_profile(db, feed):
    db.add(Profile(id="u1", is_visible=True, onboarded=True, auto_accept_connections=False))
    db.commit()

    events = []
    feed.subscribe("presence", events.append)
    store = PresenceStore(SessionLocal, feed=feed)

    store.upsert("u1", LocationSample(lat=35.994, lng=-78.899, accuracy=12))
    store.upsert("u1", LocationSample(lat=35.995, lng=-78.898, accuracy=8))

    db.expire_all()
    rows = db.query(Presence).all()
    assert len(rows) == 1
    assert rows[0].lat == pytest.approx(35.995)
    assert rows[0].geohash == to_geohash(35.995, -78.898)

    profile = db.get(Profile, "u1")
    assert profile.lat == pytest.approx(35.995)
    assert profile.location_accuracy == 8
    assert profile.geohash == rows[0].geohash
    assert len(events) == 2


def test_bound_scheduler_fires_off_the_loop_from_worker_thread():
    fired = threading.Event()
    threads = []

    def flush():
        threads.append(threading.get_ident())
        fired.set()

    async def scenario():
        scheduler = AsyncioScheduler()
        scheduler.bind(asyncio.get_running_loop())
        await asyncio.to_thread(scheduler.call_later, 0.01, flush)
        await asyncio.to_thread(fired.wait, 5)
        return threading.get_ident()

    loop_thread = asyncio.run(scenario())

    assert fired.is_set()
    assert threads and threads[0] != loop_thread


def test_cancelled_loop_timer_never_fires():
    fired = []

    async def scenario():
        scheduler = AsyncioScheduler()
        handle = scheduler.call_later(0.01, lambda: fired.append(1))
        handle.cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert fired == []
