"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from gifts import tasks
from gifts.appstate.router import router as appstate_router
from gifts.auth.router import router as auth_router
from gifts.binding.router import router as binding_router
from gifts.config import get_settings, require_config
from gifts.couple.router import router as settings_router
from gifts.database import close_db, get_engine, init_db
from gifts.events.router import router as events_router
from gifts.focus.router import router as focus_router
from gifts.health.router import router as health_router
from gifts.memories.router import router as memories_router
from gifts.middleware import setup_middleware
from gifts.notifications.router import router as notifications_router
from gifts.period.router import router as period_router
from gifts.redis_client import close_redis, init_redis
from gifts.rowstore import ResilientRowStore, SqlRowStore, close_store, init_store
from gifts.storage.service import ImageStorage, close_image_storage, init_image_storage

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    init_store(ResilientRowStore.from_settings(SqlRowStore(get_engine()), settings))
    await init_redis(settings.redis_url)
    init_image_storage(ImageStorage.from_settings(settings))
    logger.info("gifts_backend_started", version=settings.app_version, environment=settings.environment)

    yield

    await tasks.drain()
    await close_image_storage()
    close_store()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Raises:
        RuntimeError: If required configuration is missing.
    """
    settings = get_settings()
    require_config(settings)

    app = FastAPI(
        title="Gifts API",
        description="Backend API for Gifts, a shared journal for couples",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(binding_router)
    app.include_router(settings_router)
    app.include_router(appstate_router)
    app.include_router(memories_router)
    app.include_router(events_router)
    app.include_router(notifications_router)
    app.include_router(period_router)
    app.include_router(focus_router)

    return app


app = create_app()
