"""Async SQLAlchemy engine management."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

_engine: AsyncEngine | None = None


def _engine_options(url: str) -> dict[str, Any]:
    """Pool settings per backend; SQLite connections are not shared."""
    if url.startswith("sqlite"):
        return {"poolclass": NullPool}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "connect_args": {"statement_cache_size": 0},
    }


async def init_db(url: str) -> None:
    """Initialize the database engine."""
    global _engine  # noqa: PLW0603
    _engine = create_async_engine(url, echo=False, **_engine_options(url))


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    """Get the async engine instance."""
    if _engine is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _engine
