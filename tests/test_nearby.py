import asyncio
import itertools
import math
import threading

import pytest
from sqlalchemy.exc import OperationalError

from spotmate.core.db import SessionLocal
from spotmate.models.activity import ActivityPattern
from spotmate.models.compatibility import CompatibilityWeights
from spotmate.services import nearby as nearby_service
from spotmate.services.compatibility import CompatibilityError
from spotmate.services.geo import Coordinate
from spotmate.services.nearby import NearbyRegistry, NearbyUser, NearbyWatcher, find_nearby, sort_nearby

ORIGIN = (35.994, -78.899)
METERS_PER_DEG_LAT = 6371000 * math.pi / 180


def north_of(meters):
    return ORIGIN[0] + meters / METERS_PER_DEG_LAT, ORIGIN[1]


def here():
    return Coordinate(*ORIGIN)


def fixed_scorer(scores):
    def _score(user_id, target_id):
        value = scores[target_id]
        if isinstance(value, Exception):
            raise value
        return value
    return _score


def test_candidate_beyond_range_is_excluded(db, make_profile):
    make_profile("far", ["Coffee", "Art", "Music"], *north_of(101))
    assert find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"], scorer=fixed_scorer({})) == []


def test_candidate_without_shared_interest_is_excluded(db, make_profile):
    make_profile("other", ["Art", "Music", "Movies"], *north_of(50))
    assert find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"], scorer=fixed_scorer({})) == []


def test_candidate_in_range_with_shared_interest(db, make_profile):
    make_profile("near", ["Coffee", "Art", "Music"], *north_of(50))

    results = find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"], scorer=fixed_scorer({"near": 42}))

    assert [u.id for u in results] == ["near"]
    assert results[0].shared_interests == ["Coffee"]
    assert results[0].distance == pytest.approx(50, abs=0.5)
    assert results[0].compatibility_score == 42


def test_hidden_and_unonboarded_profiles_are_excluded(db, make_profile):
    make_profile("hidden", ["Coffee"], *north_of(20), visible=False)
    make_profile("fresh", ["Coffee"], *north_of(20), onboarded=False)
    assert find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"], scorer=fixed_scorer({})) == []


def test_requester_never_sees_themselves(db, make_profile):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    assert find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"], scorer=fixed_scorer({})) == []


@pytest.mark.parametrize(
    "location,interests,enabled",
    [
        (None, ["Coffee"], True),
        (Coordinate(*ORIGIN), [], True),
        (Coordinate(*ORIGIN), None, True),
        (Coordinate(*ORIGIN), ["Coffee"], False),
    ],
)
def test_nothing_returned_without_inputs(db, make_profile, location, interests, enabled):
    make_profile("near", ["Coffee"], *north_of(10))
    assert find_nearby(db, "me", location, interests, enabled=enabled, scorer=fixed_scorer({"near": 50})) == []


def test_results_sorted_by_score_then_distance(db, make_profile):
    make_profile("close_low", ["Coffee"], *north_of(10))
    make_profile("far_high", ["Coffee"], *north_of(80))
    make_profile("mid_high", ["Coffee"], *north_of(40))

    scores = {"close_low": 20, "far_high": 90, "mid_high": 90}
    results = find_nearby(db, "me", here(), ["Coffee"], scorer=fixed_scorer(scores))

    assert [u.id for u in results] == ["mid_high", "far_high", "close_low"]


def test_scorer_failure_leaves_candidate_unscored(db, make_profile):
    make_profile("broken", ["Coffee"], *north_of(30))
    make_profile("fine", ["Coffee"], *north_of(60))

    scores = {"broken": CompatibilityError("boom"), "fine": 70}
    results = find_nearby(db, "me", here(), ["Coffee"], scorer=fixed_scorer(scores))

    by_id = {u.id: u for u in results}
    assert set(by_id) == {"broken", "fine"}
    assert by_id["broken"].compatibility_score is None
    assert by_id["fine"].compatibility_score == 70


def test_unscored_entries_fall_back_to_distance():
    a = NearbyUser(id="a", name=None, interests=[], lat=0, lng=0, distance=30.0, compatibility_score=None)
    b = NearbyUser(id="b", name=None, interests=[], lat=0, lng=0, distance=10.0, compatibility_score=95)
    c = NearbyUser(id="c", name=None, interests=[], lat=0, lng=0, distance=20.0, compatibility_score=None)
    assert [u.id for u in sort_nearby([a, b, c])] == ["b", "c", "a"]


def test_downtown_scenario(db, make_profile):
    make_profile("A", ["Coffee", "Gym", "Books"], 35.994, -78.899)
    make_profile("B", ["Coffee", "Art", "Music"], 35.9941, -78.8991)

    results = find_nearby(db, "A", Coordinate(35.994, -78.899), ["Coffee", "Gym", "Books"])

    assert len(results) == 1
    b = results[0]
    assert b.id == "B"
    assert b.shared_interests == ["Coffee"]
    assert 10 < b.distance < 16
    assert b.compatibility_score == 29


# ------------------------------------------------------------------
# Watcher
# ------------------------------------------------------------------

def make_watcher(feed, scores):
    return NearbyWatcher("me", SessionLocal, feed=feed, scorer_factory=lambda db: fixed_scorer(scores))


def test_watcher_refreshes_on_location_change(make_profile, feed):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    make_profile("near", ["Coffee"], *north_of(25))
    watcher = make_watcher(feed, {"near": 55})

    assert watcher.refresh() == []  # no location yet

    results = watcher.update_location(here())
    assert [u.id for u in results] == ["near"]
    assert watcher.results is results


def test_watcher_keeps_results_when_refresh_fails(make_profile, feed, monkeypatch):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    make_profile("near", ["Coffee"], *north_of(25))
    watcher = make_watcher(feed, {"near": 55})
    watcher.update_location(here())

    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("db down"))

    monkeypatch.setattr(nearby_service, "find_nearby", broken)

    assert [u.id for u in watcher.refresh()] == ["near"]


def test_watcher_refreshes_on_presence_change(make_profile, feed):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    watcher = make_watcher(feed, {"arrival": 60})
    watcher.update_location(here())
    watcher.subscribe()
    assert watcher.results == []

    make_profile("arrival", ["Books"], *north_of(15))
    feed.publish("presence", "insert", {"user_id": "arrival"})

    assert [u.id for u in watcher.results] == ["arrival"]


def test_watcher_ignores_its_own_presence_events(make_profile, feed, monkeypatch):
    watcher = make_watcher(feed, {})
    watcher.subscribe()
    calls = []
    monkeypatch.setattr(watcher, "refresh", lambda: calls.append(1))

    feed.publish("presence", "update", {"user_id": "me"})
    feed.publish("presence", "update", {"user_id": "someone"})

    assert calls == [1]


def test_stop_clears_results_and_subscription(make_profile, feed):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    make_profile("near", ["Coffee"], *north_of(25))
    watcher = make_watcher(feed, {"near": 55})

    async def scenario():
        watcher.start()
        watcher.update_location(here())
        assert watcher._task is not None
        watcher.stop()

    asyncio.run(scenario())

    assert watcher.results == []
    assert watcher.enabled is False
    feed.publish("presence", "update", {"user_id": "near"})
    assert watcher.results == []


def test_registry_reuses_watchers(feed):
    registry = NearbyRegistry(SessionLocal, feed=feed)

    async def scenario():
        first = registry.watch("me")
        second = registry.watch("me")
        assert first is second
        registry.unwatch("me")
        assert registry.get("me") is None

    asyncio.run(scenario())


def test_one_pass_shares_one_weight_profile(db, make_profile):
    make_profile("me", ["Coffee", "Gym", "Books"], *ORIGIN)
    for place in ("cafe", "gym", "library", "park", "bar"):
        db.add(ActivityPattern(user_id="me", place_type=place, time_of_day="morning", day_type="weekday",
                               visit_count=1, frequency_score=0.2))
    db.commit()
    make_profile("twin1", ["Coffee", "Art", "Music"], *north_of(20))
    make_profile("twin2", ["Coffee", "Art", "Music"], *north_of(20))

    results = find_nearby(db, "me", here(), ["Coffee", "Gym", "Books"])

    assert [u.id for u in results] == ["twin1", "twin2"] or [u.id for u in results] == ["twin2", "twin1"]
    assert results[0].compatibility_score == results[1].compatibility_score
    db.expire_all()
    assert db.get(CompatibilityWeights, "me").data_points_count == 5


def test_mixed_sort_is_independent_of_input_order():
    users = [
        NearbyUser(id="s90", name=None, interests=[], lat=0, lng=0, distance=40.0, compatibility_score=90),
        NearbyUser(id="u5", name=None, interests=[], lat=0, lng=0, distance=5.0, compatibility_score=None),
        NearbyUser(id="s40", name=None, interests=[], lat=0, lng=0, distance=80.0, compatibility_score=40),
        NearbyUser(id="u50", name=None, interests=[], lat=0, lng=0, distance=50.0, compatibility_score=None),
        NearbyUser(id="s40n", name=None, interests=[], lat=0, lng=0, distance=10.0, compatibility_score=40),
    ]
    expected = ["s90", "s40n", "s40", "u5", "u50"]

    for ordering in itertools.permutations(users):
        assert [u.id for u in sort_nearby(list(ordering))] == expected


def test_presence_change_refreshes_off_the_loop(make_profile, feed):
    watcher = make_watcher(feed, {})
    seen = []

    async def scenario():
        watcher.start()
        loop_thread = threading.get_ident()
        done = asyncio.Event()

        def refresh():
            seen.append(threading.get_ident() != loop_thread)
            loop.call_soon_threadsafe(done.set)
            return []

        loop = asyncio.get_running_loop()
        watcher.refresh = refresh
        feed.publish("presence", "update", {"user_id": "someone"})
        assert seen == []  # nothing ran inline on the publisher's call
        await asyncio.wait_for(done.wait(), timeout=5)
        watcher.stop()

    asyncio.run(scenario())

    assert seen == [True]
