from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.match_config import MAX_RATING, MIN_RATING
from spotmate.models.feedback import MeetupFeedback
from spotmate.modules.connections.models import Match


@dataclass
class FeedbackResult:
    success: bool
    message: str


def submit_feedback(
    db: Session,
    match_id: int,
    user_id: str,
    rating: int,
    notes: Optional[str] = None,
) -> FeedbackResult:
    if not MIN_RATING <= rating <= MAX_RATING:
        return FeedbackResult(False, f"Rating must be between {MIN_RATING} and {MAX_RATING}")

    try:
        match = db.get(Match, match_id)
        if match is None:
            return FeedbackResult(False, "Match not found")
        if user_id not in (match.uid_a, match.uid_b):
            return FeedbackResult(False, "Not authorized")

        db.add(MeetupFeedback(match_id=match_id, user_id=user_id, rating=rating, notes=notes or None))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return FeedbackResult(False, "Feedback already submitted")
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[feedback] submit failed | match={match_id} err={exc}")
        return FeedbackResult(False, "Failed to submit feedback")

    logger.info(f"[feedback] recorded | match={match_id} user={user_id} rating={rating}")
    return FeedbackResult(True, "Your feedback helps improve future matches")
