from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from spotmate.schemas.base import BaseSchema


class SendRequest(BaseModel):
    target_user_id: str


class RequestAction(BaseModel):
    request_id: int


class ConnectResponse(BaseSchema):
    success: bool
    message: str
    auto_accepted: Optional[bool] = None
    request_id: Optional[int] = None
    match_id: Optional[int] = None


class IncomingRequestOut(BaseSchema):
    id: int
    sender_id: str
    receiver_id: str
    status: str
    created_at: Optional[datetime] = None


class FeedbackRequest(BaseModel):
    match_id: int
    rating: int = Field(..., ge=1, le=5)
    notes: Optional[str] = Field(None, max_length=500)
