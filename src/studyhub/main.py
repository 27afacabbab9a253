"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from studyhub.bounties.router import router as bounties_router
from studyhub.config import get_settings
from studyhub.database import close_db, create_tables, get_session_factory, init_db
from studyhub.gamification.router import router as gamification_router
from studyhub.gamification.seed import seed_badges
from studyhub.health.router import router as health_router
from studyhub.middleware import setup_middleware
from studyhub.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    if settings.create_tables_on_startup:
        await create_tables()

    try:
        async with get_session_factory()() as db:
            await seed_badges(db)
    except Exception:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="StudyHub Reputation API",
        description="XP ledger, badges and bounty escrow for the StudyHub study-materials platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)
    app.include_router(bounties_router)

    return app


app = create_app()
