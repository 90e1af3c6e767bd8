from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from spotmate.schemas.base import BaseSchema


class NearbyRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    enabled: bool = True


class NearbyUserOut(BaseSchema):
    id: str
    name: Optional[str] = None
    interests: List[str]
    lat: float
    lng: float
    distance: float
    shared_interests: List[str]
    emoji_signature: Optional[str] = None
    avatar_url: Optional[str] = None
    compatibility_score: Optional[int] = None


class NearbyResponse(BaseModel):
    users: List[NearbyUserOut]


class WatchRequest(BaseModel):
    enabled: bool
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class CompatibilityRequest(BaseModel):
    target_user_id: str = Field(..., alias="targetUserId")

    model_config = {"populate_by_name": True}


class CompatibilityResponse(BaseModel):
    targetUserId: str
    score: int = Field(..., ge=0, le=100)
    breakdown: Dict[str, int]
    weights: Dict[str, float]
    dataPoints: int
