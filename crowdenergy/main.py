"""
Main FastAPI Application - crowd-energy
"""

from __future__ import annotations
from contextlib import asynccontextmanager
import datetime
import logging
import os

from fastapi import FastAPI, HTTPException

from crowdenergy.core.engine import get_engine
from crowdenergy.routes.api_energy import router as api_energy_router
from crowdenergy.routes.api_events import router as api_events_router
from crowdenergy.routes.api_leaderboard import router as api_leaderboard_router
from crowdenergy.routes.api_samples import router as api_samples_router
from crowdenergy.utils.env import env_str
from crowdenergy.utils.error_handling import EngineError

logging.basicConfig(
    level=env_str("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    engine.start()
    logger.info(
        f"Engine started: decay={engine.config.scoring.decay} "
        f"cache_ttl={engine.config.cache_ttl_seconds}s refresh_enabled={engine.config.refresh_enabled}"
    )
    try:
        yield
    finally:
        engine.stop()


app = FastAPI(title="crowd-energy", version="v1.0.0", lifespan=lifespan)
APP_VERSION = os.getenv("APP_VERSION", app.version)
BUILD_AT = os.getenv("BUILD_AT", datetime.datetime.now(datetime.timezone.utc).isoformat())

# Include API routers
app.include_router(api_events_router)
app.include_router(api_samples_router)
app.include_router(api_energy_router)
app.include_router(api_leaderboard_router)


@app.get("/")
async def root():
    return {
        "message": "crowd-energy API",
        "version": APP_VERSION,
        "endpoints": [
            "/api/events/{event_id}",
            "/api/events/{event_id}/end",
            "/api/events/{event_id}/samples",
            "/api/events/{event_id}/energy",
            "/api/events/{event_id}/leaderboard",
            "/health", "/ready"
        ]
    }


@app.get("/health")
async def health_check():
    return {"ok": True, "status": "healthy", "version": APP_VERSION}


@app.get("/ready")
def readiness_check():
    """Check if the service is ready to handle requests."""
    engine = get_engine()
    try:
        event_count = len(engine.gateway.list_event_ids())
    except EngineError as e:
        raise HTTPException(status_code=503, detail=f"storage not ready: {e}")
    return {
        "ok": True,
        "events": event_count,
        "refresh_running": engine.scheduler.running,
        "version": APP_VERSION,
        "build_at": BUILD_AT,
    }
