from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.db import get_db
from spotmate.schemas.activity import (
    ActivityStatsResponse,
    RecordedVisitResponse,
    SessionizeResponse,
    UserTrendsOut,
    WeeklyPresenceResponse,
)
from spotmate.schemas.presence import LocationPing
from spotmate.services import runtime
from spotmate.services.activity_stats import activity_stats, user_trends, weekly_presence
from spotmate.services.presence_publisher import LocationSample
from spotmate.services.sessions import sessionize_recent_visits

router = APIRouter(prefix="/activity", tags=["activity"])


@router.post("/record", response_model=RecordedVisitResponse)
def record_activity(
    payload: LocationPing,
    enabled: bool = True,
    x_user_id: str = Header(...),
):
    visit = runtime.activity_recorder.maybe_record(
        x_user_id,
        LocationSample(lat=payload.lat, lng=payload.lng, accuracy=payload.accuracy, speed=payload.speed),
        enabled=enabled,
    )
    if visit is None:
        return RecordedVisitResponse(recorded=False)

    return RecordedVisitResponse(
        recorded=True,
        place_type=visit.place_type,
        place_name=visit.place_name,
        time_of_day=visit.time_of_day,
        day_type=visit.day_type,
        confidence=visit.confidence,
        timezone=visit.timezone,
        timestamp_utc=visit.timestamp_utc,
    )


@router.post("/sessionize", response_model=SessionizeResponse)
def sessionize(
    all_users: bool = False,
    gap_minutes: Optional[int] = None,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    kwargs = {"gap_minutes": gap_minutes} if gap_minutes else {}
    try:
        created = sessionize_recent_visits(db, None if all_users else x_user_id, **kwargs)
    except SQLAlchemyError:
        # already logged and rolled back
        return SessionizeResponse(success=False, message="Sessionization failed")
    return SessionizeResponse(success=True, sessions_created=created)


@router.get("/stats", response_model=ActivityStatsResponse)
def get_activity_stats(x_user_id: str = Header(...), db: Session = Depends(get_db)):
    return ActivityStatsResponse(activities=[asdict(s) for s in activity_stats(db, x_user_id)])


@router.get("/weekly", response_model=WeeklyPresenceResponse)
def get_weekly_presence(x_user_id: str = Header(...), db: Session = Depends(get_db)):
    return WeeklyPresenceResponse(days=[asdict(d) for d in weekly_presence(db, x_user_id)])


@router.get("/trends", response_model=UserTrendsOut)
def get_trends(x_user_id: str = Header(...), db: Session = Depends(get_db)):
    return UserTrendsOut(**asdict(user_trends(db, x_user_id)))
