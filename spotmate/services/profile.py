from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.models.profile import Profile
from spotmate.services.interests import validate_interests


@dataclass
class ProfileResult:
    success: bool
    message: str


def _get_or_create(db: Session, user_id: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None:
        profile = Profile(
            id=user_id,
            is_visible=False,
            onboarded=False,
            auto_accept_connections=False,
        )
        db.add(profile)
    return profile


def save_interests(db: Session, user_id: str, interests: list[str], name: str | None = None) -> ProfileResult:
    valid, error = validate_interests(interests)
    if not valid:
        return ProfileResult(False, error)

    try:
        profile = _get_or_create(db, user_id)
        profile.interests = list(interests)
        if name:
            profile.name = name
        profile.onboarded = True
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[profile] save interests failed | user={user_id} err={exc}")
        return ProfileResult(False, "Failed to save interests")

    logger.info(f"[profile] interests saved | user={user_id}")
    return ProfileResult(True, "Interests saved")


def set_flag(db: Session, user_id: str, field: str, value: bool) -> ProfileResult:
    if field not in ("is_visible", "auto_accept_connections"):
        raise ValueError(f"Unknown profile flag: {field}")

    try:
        profile = _get_or_create(db, user_id)
        setattr(profile, field, value)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"[profile] update {field} failed | user={user_id} err={exc}")
        return ProfileResult(False, "Failed to update profile")

    return ProfileResult(True, "Profile updated")
