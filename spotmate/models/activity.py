from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    JSON,
    CheckConstraint,
    UniqueConstraint,
    func,
)
from spotmate.core.db import Base


class LocationVisit(Base):
    """Append-only raw visit; never updated after insert."""

    __tablename__ = "location_visits"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)

    place_id = Column(String, nullable=True)
    place_name = Column(String, nullable=True)
    place_type = Column(String, nullable=False)
    types = Column(JSON, nullable=True)

    time_of_day = Column(String, nullable=False)  # morning | afternoon | evening
    day_type = Column(String, nullable=False)     # weekday | weekend
    confidence = Column(
        Float,
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="location_visits_confidence_check"),
        nullable=False,
    )

    timestamp_utc = Column(DateTime(timezone=True), nullable=False)
    user_timezone_at_event = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ActivityPattern(Base):
    __tablename__ = "activity_patterns"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    place_type = Column(String, nullable=False)
    time_of_day = Column(String, nullable=False)
    day_type = Column(String, nullable=False)

    visit_count = Column(Integer, nullable=False, default=0)
    frequency_score = Column(Float, nullable=False, default=0.0)
    last_visit_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "place_type", "time_of_day", "day_type", name="uq_activity_pattern_key"),
    )


class PlaceCache(Base):
    __tablename__ = "place_cache"

    place_id = Column(String, primary_key=True)
    place_name = Column(String, nullable=True)
    place_type = Column(String, nullable=False)
    types = Column(JSON, nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)

    use_count = Column(Integer, nullable=False, default=1)
    last_used_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class LocationSession(Base):
    """Consecutive visits at one place collapsed into a stay with a dwell time."""

    __tablename__ = "location_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    geohash = Column(String, nullable=False)

    place_id = Column(String, nullable=True)
    place_name = Column(String, nullable=True)
    place_type = Column(String, nullable=False)

    start_ts = Column(DateTime(timezone=True), nullable=False)
    end_ts = Column(DateTime(timezone=True), nullable=False, index=True)
    dwell_min = Column(Integer, nullable=False, default=0)
    visit_count = Column(Integer, nullable=False, default=1)

    time_of_day = Column(String, nullable=True)
    day_type = Column(String, nullable=True)
    confidence = Column(Float, nullable=False)
    user_timezone = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
