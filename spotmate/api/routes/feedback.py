from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from spotmate.core.db import get_db
from spotmate.schemas.base import CommandResponse
from spotmate.schemas.connections import FeedbackRequest
from spotmate.services.feedback import submit_feedback

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("", response_model=CommandResponse)
def post_feedback(
    payload: FeedbackRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return submit_feedback(db, payload.match_id, x_user_id, payload.rating, payload.notes)
