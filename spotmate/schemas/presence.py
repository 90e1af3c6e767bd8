from pydantic import BaseModel, Field
from typing import Optional

class LocationPing(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: float = Field(0.0, ge=0)
    speed: Optional[float] = Field(None, ge=0)

class PresencePingResponse(BaseModel):
    outcome: str
    geohash: str

class TrackingRequest(BaseModel):
    enabled: bool

class PublishedFix(BaseModel):
    lat: float
    lng: float
    timestamp: float

class PresenceStatusResponse(BaseModel):
    user_id: str
    enabled: bool
    buffered: int
    pending_publish: bool
    publish_count: int
    last_published: Optional[PublishedFix] = None
    last_error: Optional[str] = None
