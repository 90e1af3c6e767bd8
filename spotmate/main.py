import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from spotmate.core.logging import setup_logging
from spotmate.core.init_db import init_db
from spotmate.api.router import api_router
from spotmate.modules.connections import routes as connections_routes
from spotmate.services import runtime

setup_logging()
logger.info("Starting Spotmate backend")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    runtime.startup(asyncio.get_running_loop())
    yield
    # cancel debounce timers and polls, flush buffered presence
    runtime.shutdown()
    logger.info("Spotmate backend stopped")


app = FastAPI(
    title="Spotmate Backend",
    version="0.1.0",
    lifespan=lifespan,
)

# All API routes (profile, presence, activity, nearby, feedback)
app.include_router(api_router)

# Connections module
app.include_router(connections_routes.router)


@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
