from sqlalchemy import Column, String, Float, Integer, DateTime, func
from spotmate.core.db import Base


class CompatibilityWeights(Base):
    """Per-user adaptive weights; the three weights always sum to 1."""

    __tablename__ = "compatibility_weights"

    user_id = Column(String, primary_key=True)

    interest_weight = Column(Float, nullable=False, default=0.8)
    behavior_weight = Column(Float, nullable=False, default=0.15)
    feedback_weight = Column(Float, nullable=False, default=0.05)
    data_points_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
