from datetime import datetime, timezone

from spotmate.models.activity import ActivityPattern, LocationVisit
from spotmate.modules.connections.models import Match
from spotmate.services.activity_stats import (
    activity_stats,
    format_place_type,
    place_type_emoji,
    user_trends,
    weekly_presence,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)  # Monday


def add_pattern(db, place_type, visit_count, tod="morning", day="weekday", user_id="u1"):
    db.add(ActivityPattern(user_id=user_id, place_type=place_type, time_of_day=tod, day_type=day,
                           visit_count=visit_count, frequency_score=0.0))
    db.commit()


def add_visit(db, ts, tod, user_id="u1"):
    db.add(LocationVisit(user_id=user_id, lat=35.994, lng=-78.899, place_type="general", time_of_day=tod,
                         day_type="weekday", confidence=1.0, timestamp_utc=ts,
                         user_timezone_at_event="America/New_York"))
    db.commit()


def test_interests_come_first_with_weekly_frequency(db, make_profile):
    make_profile("u1", interests=["Coffee", "Gym", "Books"])
    add_pattern(db, "gym", 30)
    add_pattern(db, "cafe", 12)

    stats = activity_stats(db, "u1")

    assert [(s.name, s.frequency, s.is_interest) for s in stats] == [
        ("Coffee", "TBD", True),
        ("Gym", "7×/week", True),
        ("Books", "TBD", True),
    ]
    assert stats[0].icon == "☕"


def test_top_patterns_fill_without_interests(db, make_profile):
    make_profile("u1", interests=[])
    add_pattern(db, "cafe", 15)
    add_pattern(db, "shopping_mall", 4, tod="afternoon")
    add_pattern(db, "park", 1, tod="evening")
    add_pattern(db, "bar", 1, day="weekend")

    stats = activity_stats(db, "u1")

    assert [(s.icon, s.name, s.frequency) for s in stats] == [
        ("☕", "Cafe", "4×/week"),
        ("📍", "Shopping Mall", "1×/week"),
        ("🌲", "Park", "0×/week"),
    ]
    assert not any(s.is_interest for s in stats)


def test_place_type_helpers():
    assert format_place_type("shopping_mall") == "Shopping Mall"
    assert place_type_emoji("book_store") == "📚"
    assert place_type_emoji("general") == "📍"


def test_weekly_presence_buckets_by_local_day(db):
    add_visit(db, datetime(2026, 10, 13, 13, 0, tzinfo=timezone.utc), "morning")    # Tue 09:00 New York
    add_visit(db, datetime(2026, 10, 13, 14, 0, tzinfo=timezone.utc), "morning")
    add_visit(db, datetime(2026, 10, 18, 0, 0, tzinfo=timezone.utc), "evening")     # Sat 20:00 New York
    add_visit(db, datetime(2026, 10, 5, 13, 0, tzinfo=timezone.utc), "morning")     # older than a week

    days = weekly_presence(db, "u1", now=NOW)

    assert [d.day for d in days] == list(range(7))
    assert [d.count for d in days] == [0, 0, 2, 0, 0, 0, 1]
    assert days[2].time_of_day == {"morning": 2, "afternoon": 0, "evening": 0}
    assert days[6].time_of_day["evening"] == 1


def test_trends_from_top_pattern_and_connections(db):
    add_pattern(db, "bar", 9, tod="evening", day="weekend")
    add_pattern(db, "cafe", 2)
    db.add_all([
        Match(pair_id="u1_u2", uid_a="u1", uid_b="u2", status="connected", venue_name="Blue Cafe"),
        Match(pair_id="u1_u3", uid_a="u1", uid_b="u3", status="talking", venue_name="Library"),
        Match(pair_id="u0_u1", uid_a="u0", uid_b="u1", status="connected", venue_name="Coffee Hut"),
        Match(pair_id="u1_u4", uid_a="u1", uid_b="u4", status="pending", venue_name="Cafe Nero"),
    ])
    db.commit()

    trends = user_trends(db, "u1", now=NOW)

    assert trends.typical_time_window == "6-10 PM"
    assert trends.most_active_day == "weekends"
    assert trends.connection_stats == "67% of connections at cafés"


def test_trends_fall_back_to_current_time(db):
    trends = user_trends(db, "u1", now=NOW)

    assert trends.typical_time_window == "12-6 PM"
    assert trends.most_active_day == "weekdays"
    assert trends.connection_stats == "0 connections so far"
