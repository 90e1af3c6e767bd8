from __future__ import annotations

import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from loguru import logger

from spotmate.core.config import GEOCODER_TIMEOUT_SECONDS, GOOGLE_MAPS_API_KEY

TIMEZONE_API_URL = "https://maps.googleapis.com/maps/api/timezone/json"


def estimate_timezone_from_longitude(lng: float) -> str:
    # rough US bands; anything else is UTC
    if -75 <= lng <= -60:
        return "America/New_York"
    if -90 <= lng < -75:
        return "America/Chicago"
    if -115 <= lng < -90:
        return "America/Denver"
    if -125 <= lng < -115:
        return "America/Los_Angeles"
    return "UTC"


class TimezoneResolver:
    """IANA timezone for a coordinate; remote when a key is configured."""

    def __init__(self, api_key: str | None = GOOGLE_MAPS_API_KEY, client: httpx.Client | None = None):
        self._api_key = api_key
        self._client = client

    def resolve(self, lat: float, lng: float) -> str:
        if self._api_key:
            try:
                tz = self._fetch(lat, lng)
                if tz:
                    return tz
            except httpx.HTTPError as exc:
                logger.warning(f"[tz] timezone API failed: {exc}")
        return estimate_timezone_from_longitude(lng)

    def _fetch(self, lat: float, lng: float) -> str | None:
        params = {
            "location": f"{lat},{lng}",
            "timestamp": int(time.time()),
            "key": self._api_key,
        }
        client = self._client or httpx.Client(timeout=GEOCODER_TIMEOUT_SECONDS)
        try:
            resp = client.get(TIMEZONE_API_URL, params=params)
            resp.raise_for_status()
            data = resp.json()
        finally:
            if self._client is None:
                client.close()

        if data.get("status") == "OK" and data.get("timeZoneId"):
            logger.debug(f"[tz] detected {data['timeZoneId']}")
            return data["timeZoneId"]
        return None


def local_time(ts: datetime, tz_name: str) -> datetime:
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc
    return ts.astimezone(zone)


def time_of_day(local: datetime) -> str:
    if local.hour < 12:
        return "morning"
    if local.hour < 17:
        return "afternoon"
    return "evening"


def day_type(local: datetime) -> str:
    return "weekend" if local.weekday() >= 5 else "weekday"
