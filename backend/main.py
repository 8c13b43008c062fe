"""FastAPI application entry point and configuration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from backend.api.cards_router import router as cards_router
from backend.api.session_router import router as session_router
from backend.api.settings_router import router as settings_router
from backend.api.stats_router import router as stats_router
from backend.api.struggle_router import router as struggle_router
from backend.config import settings
from backend.database import async_session, engine, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize database on startup and cleanup on shutdown."""
    await init_db()
    logger.info("%s started", settings.app_name)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Spaced repetition scheduling for language phrases",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(session_router)
app.include_router(settings_router)
app.include_router(struggle_router)
app.include_router(cards_router)
app.include_router(stats_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Check database connectivity and return status."""
    async with async_session() as session:
        await session.execute(text("SELECT 1"))
    return {"status": "ok"}
