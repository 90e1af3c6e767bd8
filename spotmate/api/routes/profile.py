from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from spotmate.core.db import get_db
from spotmate.schemas.base import CommandResponse
from spotmate.schemas.profile import FlagRequest, InterestsRequest
from spotmate.services.profile import save_interests, set_flag

router = APIRouter(prefix="/profile", tags=["profile"])


@router.put("/interests", response_model=CommandResponse)
def put_interests(
    payload: InterestsRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    result = save_interests(db, x_user_id, payload.interests, name=payload.name)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return result


@router.put("/visibility", response_model=CommandResponse)
def put_visibility(
    payload: FlagRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return set_flag(db, x_user_id, "is_visible", payload.enabled)


@router.put("/auto-accept", response_model=CommandResponse)
def put_auto_accept(
    payload: FlagRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return set_flag(db, x_user_id, "auto_accept_connections", payload.enabled)
