"""
Sprintboard API application.

Mounts the dashboard, preferences, relay and health routers under /api and
prepares logging and the preferences store on startup.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sprintboard.core.config import settings
from sprintboard.core.logging_config import configure_logging
from sprintboard.routers import azdo, dashboard, health, preferences
from sprintboard.services.preferences_store import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and open the preferences store before serving."""
    configure_logging(settings.log_level)
    init_db()
    logger.info("Starting Sprintboard API on %s:%s", settings.host, settings.port)
    yield
    logger.info("Shutting down Sprintboard API")


app = FastAPI(
    title="Sprintboard API",
    description="Sprint progress, capacity and risk analytics for issue tracker exports",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Every router lives under /api
app.include_router(health.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(preferences.router, prefix="/api")
app.include_router(azdo.router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sprintboard.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
