# src/pulse_shield/main.py
"""Main entry point for the Pulse Shield service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pulse_shield.api.v1 import security_router
from pulse_shield.api.v1.dependencies import DefenseDep
from pulse_shield.core.settings import settings
from pulse_shield.db.session import SessionLocal, create_tables, engine
from pulse_shield.services.defense import DefenseCore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.create_tables_on_startup:
        await create_tables()
    app.state.defense = DefenseCore.from_settings(settings, SessionLocal)
    logger.info("Defense core started with %s store", settings.store_backend)
    try:
        yield
    finally:
        await app.state.defense.close()
        app.state.defense = None
        await engine.dispose()


# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Adaptive request defense: rate limits, lockouts, API keys and IP reputation",
    version=settings.app_version,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(security_router, prefix="/api/v1")


@app.get("/health")
async def health_check(defense: DefenseDep) -> dict[str, str]:
    """Health check endpoint reporting whether the shared store answers."""
    store_ok = await defense.store.ping()
    return {"status": "ok" if store_ok else "degraded", "store": "up" if store_ok else "down"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pulse_shield.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
