from sqlalchemy import Column, String, Float, Boolean, DateTime, JSON, func
from spotmate.core.db import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)

    # exactly 3 entries from INTEREST_OPTIONS once onboarded
    interests = Column(JSON, nullable=True)

    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    geohash = Column(String, nullable=True, index=True)
    location_accuracy = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    is_visible = Column(Boolean, nullable=False, default=False)
    onboarded = Column(Boolean, nullable=False, default=False)
    auto_accept_connections = Column(Boolean, nullable=False, default=False)

    emoji_signature = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)

    # "{place_type}_{time_of_day}_{day_type}" -> visit_count, frequency_score, last_visit
    activity_fingerprint = Column(JSON, nullable=True)

    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
