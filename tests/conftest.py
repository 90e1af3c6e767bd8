"""Pytest configuration: temporary SQLite database and engine fakes."""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="spotmate-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("GOOGLE_MAPS_API_KEY", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from spotmate.core.db import Base, SessionLocal, engine  # noqa: E402
from spotmate.core import init_db as _models  # noqa: E402,F401  registers every table
from spotmate.models.profile import Profile  # noqa: E402
from spotmate.services import runtime  # noqa: E402
from spotmate.services.activity_recorder import ActivityRecorder  # noqa: E402
from spotmate.services.change_feed import ChangeFeed  # noqa: E402
from spotmate.services.geo import to_geohash  # noqa: E402
from spotmate.services.nearby import NearbyRegistry  # noqa: E402
from spotmate.services.places import PlaceLookup, PlacesClient  # noqa: E402
from spotmate.services.presence_publisher import PresenceRegistry, PresenceStore  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.handles = []

    def call_later(self, delay, callback):
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self):
        return [h for h in self.handles if not h.cancelled]

    def fire_all(self):
        for handle in self.active:
            handle.cancelled = True
            handle.callback()


class FixedTimezone:
    def __init__(self, tz="America/New_York"):
        self.tz = tz
        self.calls = 0

    def resolve(self, lat, lng):
        self.calls += 1
        return self.tz


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def offline_places():
    return PlaceLookup(PlacesClient(api_key=None))


@pytest.fixture
def make_profile(db):
    def _make(user_id, interests=None, lat=None, lng=None, visible=True, onboarded=True, auto_accept=False, name=None):
        profile = Profile(
            id=user_id,
            name=name or user_id,
            interests=interests,
            lat=lat,
            lng=lng,
            geohash=to_geohash(lat, lng) if lat is not None and lng is not None else None,
            is_visible=visible,
            onboarded=onboarded,
            auto_accept_connections=auto_accept,
        )
        db.add(profile)
        db.commit()
        return profile
    return _make


@pytest.fixture
def client(monkeypatch, clock, scheduler, feed, offline_places):
    monkeypatch.setattr(
        runtime,
        "presence_registry",
        PresenceRegistry(lambda: PresenceStore(SessionLocal, feed=feed), scheduler=scheduler, clock=clock),
    )
    monkeypatch.setattr(
        runtime,
        "activity_recorder",
        ActivityRecorder(SessionLocal, timezone_resolver=FixedTimezone(), place_lookup=offline_places, clock=clock),
    )
    monkeypatch.setattr(runtime, "nearby_registry", NearbyRegistry(SessionLocal, feed=feed))

    from spotmate.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def fixed_tz():
    return FixedTimezone()
