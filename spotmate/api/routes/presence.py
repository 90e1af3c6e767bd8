import asyncio

from fastapi import APIRouter, Header
from loguru import logger

from spotmate.schemas.presence import (
    LocationPing,
    PresencePingResponse,
    PresenceStatusResponse,
    TrackingRequest,
)
from spotmate.services import runtime
from spotmate.services.geo import Coordinate, to_geohash
from spotmate.services.presence_publisher import LocationSample

router = APIRouter()


# ------------------------------------------------------------------
# PING
# ------------------------------------------------------------------

@router.post("/ping", response_model=PresencePingResponse)
async def presence_ping(
    payload: LocationPing,
    x_user_id: str = Header(...),
):
    publisher = runtime.presence_registry.get(x_user_id)
    sample = LocationSample(lat=payload.lat, lng=payload.lng, accuracy=payload.accuracy, speed=payload.speed)
    # publishing writes to the database and fans out to nearby watchers
    outcome = await asyncio.to_thread(publisher.handle_sample, sample)
    logger.debug(f"[presence] ping | user={x_user_id} outcome={outcome}")

    watcher = runtime.nearby_registry.get(x_user_id)
    if watcher is not None and outcome != "duplicate":
        await asyncio.to_thread(watcher.update_location, Coordinate(lat=payload.lat, lng=payload.lng))

    return {"outcome": outcome, "geohash": to_geohash(payload.lat, payload.lng)}


# ------------------------------------------------------------------
# TRACKING TOGGLE
# ------------------------------------------------------------------

@router.post("/tracking", response_model=PresenceStatusResponse)
async def presence_tracking(
    payload: TrackingRequest,
    x_user_id: str = Header(...),
):
    publisher = runtime.presence_registry.get(x_user_id)
    # disabling flushes the buffer
    await asyncio.to_thread(publisher.set_enabled, payload.enabled)
    logger.info(f"[presence] tracking {'enabled' if payload.enabled else 'disabled'} | user={x_user_id}")
    return publisher.status()


@router.get("/status", response_model=PresenceStatusResponse)
def presence_status(x_user_id: str = Header(...)):
    return runtime.presence_registry.get(x_user_id).status()
