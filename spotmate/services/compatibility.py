"""
Adaptive compatibility scoring.

    score = round(100 * (interest * w_i + behavior * w_b + feedback * w_f))

Each sub-score is in [0, 1]. The weights follow a fixed schedule keyed by
how many behavioral data points the requesting user has accumulated: new
users are scored almost entirely on shared interests, mature users lean on
behavior and meetup feedback. Weights are cached per requesting user, not
per pair, so one nearby pass reuses a single weight profile.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Iterable, List, Optional, Protocol

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.match_config import (
    MAX_RATING,
    MIN_RATING,
    NEUTRAL_FEEDBACK_SCORE,
    REQUIRED_INTEREST_COUNT,
    WEIGHT_BANDS,
)
from spotmate.models.activity import ActivityPattern
from spotmate.models.compatibility import CompatibilityWeights
from spotmate.models.feedback import MeetupFeedback
from spotmate.models.profile import Profile
from spotmate.modules.connections.models import Match
from spotmate.services.geo import generate_pair_id
from spotmate.services.interests import common_interests


class CompatibilityError(Exception):
    """Raised when any lookup needed for a score fails."""


class PatternLike(Protocol):
    place_type: str
    time_of_day: str
    day_type: str
    frequency_score: float


@dataclass(frozen=True)
class Weights:
    interest: float
    behavior: float
    feedback: float


@dataclass
class CompatibilityResult:
    target_user_id: str
    score: int
    interest_score: float
    behavior_score: float
    feedback_score: float
    weights: Weights
    data_points: int

    def breakdown(self) -> dict:
        return {
            "interestScore": round(self.interest_score * 100),
            "behaviorScore": round(self.behavior_score * 100),
            "feedbackScore": round(self.feedback_score * 100),
        }

    def to_dict(self) -> dict:
        return {
            "targetUserId": self.target_user_id,
            "score": self.score,
            "breakdown": self.breakdown(),
            "weights": asdict(self.weights),
            "dataPoints": self.data_points,
        }


# ------------------------------------------------------------------
# Sub-scores
# ------------------------------------------------------------------

def calculate_interest_score(user_interests: Optional[list], target_interests: Optional[list]) -> float:
    shared = common_interests(user_interests, target_interests)
    return min(len(shared) / REQUIRED_INTEREST_COUNT, 1.0)


def _pattern_key(p: PatternLike) -> tuple[str, str, str]:
    return (p.place_type, p.time_of_day, p.day_type)


def calculate_behavior_score(user_patterns: Iterable[PatternLike], target_patterns: Iterable[PatternLike]) -> float:
    target_map = {_pattern_key(p): p.frequency_score for p in target_patterns}
    if not target_map:
        return 0.0

    total = 0.0
    overlaps = 0
    for p in user_patterns:
        other = target_map.get(_pattern_key(p))
        if other is None:
            continue
        total += 1 - abs(p.frequency_score - other)
        overlaps += 1

    return total / overlaps if overlaps else 0.0


def calculate_feedback_score(db: Session, user_id: str, target_user_id: str) -> float:
    """Average meetup rating for this pair's own match, scaled from 1-5 to 0-1."""
    pair_id = generate_pair_id(user_id, target_user_id)
    match_ids = [row.id for row in db.query(Match.id).filter(Match.pair_id == pair_id).all()]
    if not match_ids:
        return NEUTRAL_FEEDBACK_SCORE

    ratings = [
        row.rating
        for row in db.query(MeetupFeedback.rating).filter(MeetupFeedback.match_id.in_(match_ids)).all()
    ]
    if not ratings:
        return NEUTRAL_FEEDBACK_SCORE

    avg = sum(ratings) / len(ratings)
    return (avg - MIN_RATING) / (MAX_RATING - MIN_RATING)


# ------------------------------------------------------------------
# Weights
# ------------------------------------------------------------------

def adapt_weights(current: Optional[Weights], data_points: int) -> Weights:
    for upper, interest, behavior, feedback in WEIGHT_BANDS:
        if upper is None or data_points < upper:
            weights = Weights(interest=interest, behavior=behavior, feedback=feedback)
            break

    if current is not None and current != weights:
        logger.debug(f"[compat] weights shifted {current} -> {weights} at data_points={data_points}")
    return weights


def _load_weights(db: Session, user_id: str) -> CompatibilityWeights:
    row = db.get(CompatibilityWeights, user_id)
    if row is None:
        _, interest, behavior, feedback = WEIGHT_BANDS[0]
        row = CompatibilityWeights(
            user_id=user_id,
            interest_weight=interest,
            behavior_weight=behavior,
            feedback_weight=feedback,
            data_points_count=0,
        )
        db.add(row)
        db.flush()
    return row


# ------------------------------------------------------------------
# Requester profile, prepared once per scoring pass
# ------------------------------------------------------------------

@dataclass(frozen=True)
class PatternSnapshot:
    place_type: str
    time_of_day: str
    day_type: str
    frequency_score: float


@dataclass
class WeightProfile:
    """The requester's side of a scoring pass: adapted weights plus inputs."""

    user_id: str
    weights: Weights
    data_points: int
    interests: List[str] = field(default_factory=list)
    patterns: List[PatternSnapshot] = field(default_factory=list)


def _snapshot(patterns: Iterable[ActivityPattern]) -> List[PatternSnapshot]:
    return [
        PatternSnapshot(p.place_type, p.time_of_day, p.day_type, p.frequency_score or 0.0)
        for p in patterns
    ]


def prepare_weight_profile(db: Session, user_id: str) -> WeightProfile:
    """
    Adapt and persist the requester's weights exactly once. Every candidate
    scored against the returned profile shares the same weight band, so a
    nearby pass ranks identical candidates identically.
    """
    try:
        me = db.get(Profile, user_id)
        if me is None:
            raise CompatibilityError("Profiles not found")

        interests = list(me.interests or [])
        patterns = _snapshot(db.query(ActivityPattern).filter(ActivityPattern.user_id == user_id).all())

        stored = _load_weights(db, user_id)
        data_points = len(patterns) + (stored.data_points_count or 0)
        previous = Weights(
            interest=stored.interest_weight,
            behavior=stored.behavior_weight,
            feedback=stored.feedback_weight,
        )
        weights = adapt_weights(previous, data_points)

        stored.interest_weight = weights.interest
        stored.behavior_weight = weights.behavior
        stored.feedback_weight = weights.feedback
        stored.data_points_count = data_points
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise CompatibilityError(f"Lookup failed: {exc}") from exc
    except CompatibilityError:
        db.rollback()
        raise

    return WeightProfile(
        user_id=user_id,
        weights=weights,
        data_points=data_points,
        interests=interests,
        patterns=patterns,
    )


def score_against(db: Session, profile: WeightProfile, target_user_id: str) -> CompatibilityResult:
    """Score one target with an already prepared profile; writes nothing."""
    if profile.user_id == target_user_id:
        raise CompatibilityError("Cannot score a user against themselves")

    try:
        target = db.get(Profile, target_user_id)
        if target is None:
            raise CompatibilityError("Profiles not found")

        target_patterns = _snapshot(
            db.query(ActivityPattern).filter(ActivityPattern.user_id == target_user_id).all()
        )
        interest_score = calculate_interest_score(profile.interests, target.interests)
        behavior_score = calculate_behavior_score(profile.patterns, target_patterns)
        feedback_score = calculate_feedback_score(db, profile.user_id, target_user_id)
    except SQLAlchemyError as exc:
        raise CompatibilityError(f"Lookup failed: {exc}") from exc

    weights = profile.weights
    raw = (
        interest_score * weights.interest
        + behavior_score * weights.behavior
        + feedback_score * weights.feedback
    )
    score = max(0, min(100, round(raw * 100)))

    result = CompatibilityResult(
        target_user_id=target_user_id,
        score=score,
        interest_score=interest_score,
        behavior_score=behavior_score,
        feedback_score=feedback_score,
        weights=weights,
        data_points=profile.data_points,
    )
    logger.info(
        f"[compat] {profile.user_id} -> {target_user_id} score={score} "
        f"breakdown={result.breakdown()} dataPoints={profile.data_points}"
    )
    return result


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def calculate_compatibility(db: Session, user_id: str, target_user_id: str) -> CompatibilityResult:
    """A single-target pass: prepare the requester once, then score."""
    if user_id == target_user_id:
        raise CompatibilityError("Cannot score a user against themselves")

    try:
        found = db.query(Profile.id).filter(Profile.id.in_([user_id, target_user_id])).count()
    except SQLAlchemyError as exc:
        db.rollback()
        raise CompatibilityError(f"Lookup failed: {exc}") from exc
    if found < 2:
        raise CompatibilityError("Profiles not found")

    return score_against(db, prepare_weight_profile(db, user_id), target_user_id)
