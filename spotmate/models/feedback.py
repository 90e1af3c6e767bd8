from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func
from spotmate.core.db import Base


class MeetupFeedback(Base):
    __tablename__ = "meetup_feedback"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    rating = Column(
        Integer,
        CheckConstraint("rating BETWEEN 1 AND 5", name="meetup_feedback_rating_check"),
        nullable=False,
    )
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_feedback_once"),
    )
