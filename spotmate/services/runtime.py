"""Process-wide engine instances shared by the HTTP routes."""
import asyncio

from spotmate.core.db import SessionLocal
from spotmate.services.activity_recorder import ActivityRecorder
from spotmate.services.change_feed import change_feed
from spotmate.services.nearby import NearbyRegistry
from spotmate.services.presence_publisher import AsyncioScheduler, PresenceRegistry, PresenceStore

# bound to the server loop at startup so pings handled in worker threads can arm timers
presence_scheduler = AsyncioScheduler()

presence_registry = PresenceRegistry(
    lambda: PresenceStore(SessionLocal, feed=change_feed),
    scheduler=presence_scheduler,
)
activity_recorder = ActivityRecorder(SessionLocal)
nearby_registry = NearbyRegistry(SessionLocal, feed=change_feed)


def startup(loop: asyncio.AbstractEventLoop) -> None:
    presence_scheduler.bind(loop)


def shutdown() -> None:
    presence_registry.shutdown()
    nearby_registry.shutdown()
