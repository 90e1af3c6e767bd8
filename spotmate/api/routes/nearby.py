import asyncio

from fastapi import APIRouter, Depends, Header, HTTPException
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spotmate.core.db import get_db
from spotmate.models.profile import Profile
from spotmate.schemas.nearby import (
    CompatibilityRequest,
    CompatibilityResponse,
    NearbyRequest,
    NearbyResponse,
    WatchRequest,
)
from spotmate.services import runtime
from spotmate.services.compatibility import CompatibilityError, calculate_compatibility
from spotmate.services.geo import Coordinate
from spotmate.services.nearby import find_nearby

router = APIRouter(tags=["nearby"])


# ------------------------------------------------------------------
# ONE-SHOT QUERY
# ------------------------------------------------------------------

@router.post("/nearby", response_model=NearbyResponse)
def nearby(
    payload: NearbyRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    try:
        me = db.get(Profile, x_user_id)
        users = find_nearby(
            db,
            x_user_id,
            Coordinate(lat=payload.lat, lng=payload.lng),
            me.interests if me else None,
            enabled=payload.enabled,
        )
    except SQLAlchemyError as exc:
        logger.error(f"[nearby] query failed | user={x_user_id} err={exc}")
        users = []
    return {"users": users}


# ------------------------------------------------------------------
# LIVE LIST
# ------------------------------------------------------------------

@router.post("/nearby/watch", response_model=NearbyResponse)
async def nearby_watch(
    payload: WatchRequest,
    x_user_id: str = Header(...),
):
    if not payload.enabled:
        runtime.nearby_registry.unwatch(x_user_id)
        return {"users": []}

    # subscribing and starting the poll need the loop; the query does not
    watcher = runtime.nearby_registry.watch(x_user_id)
    if payload.lat is not None and payload.lng is not None:
        await asyncio.to_thread(watcher.update_location, Coordinate(lat=payload.lat, lng=payload.lng))
    return {"users": watcher.results}


@router.get("/nearby/current", response_model=NearbyResponse)
def nearby_current(x_user_id: str = Header(...)):
    watcher = runtime.nearby_registry.get(x_user_id)
    return {"users": watcher.results if watcher else []}


# ------------------------------------------------------------------
# COMPATIBILITY
# ------------------------------------------------------------------

@router.post("/compatibility", response_model=CompatibilityResponse)
def compatibility(
    payload: CompatibilityRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    try:
        result = calculate_compatibility(db, x_user_id, payload.target_user_id)
    except CompatibilityError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return result.to_dict()
