from datetime import datetime
from typing import Dict, List, Optional

from spotmate.schemas.base import BaseSchema


class RecordedVisitResponse(BaseSchema):
    recorded: bool
    place_type: Optional[str] = None
    place_name: Optional[str] = None
    time_of_day: Optional[str] = None
    day_type: Optional[str] = None
    confidence: Optional[float] = None
    timezone: Optional[str] = None
    timestamp_utc: Optional[datetime] = None


class SessionizeResponse(BaseSchema):
    success: bool
    sessions_created: int = 0
    message: Optional[str] = None


class ActivityStatOut(BaseSchema):
    icon: str
    name: str
    frequency: str
    is_interest: bool


class ActivityStatsResponse(BaseSchema):
    activities: List[ActivityStatOut]


class DayPresenceOut(BaseSchema):
    day: int
    count: int
    time_of_day: Dict[str, int]


class WeeklyPresenceResponse(BaseSchema):
    days: List[DayPresenceOut]


class UserTrendsOut(BaseSchema):
    typical_time_window: str
    most_active_day: str
    connection_stats: str
