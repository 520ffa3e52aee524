"""Health, readiness, and version endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from gifts.config import get_settings
from gifts.database import get_engine
from gifts.redis_client import get_redis

router = APIRouter()

SERVICE_NAME = "gifts-backend"


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/api/health")
async def api_health() -> dict[str, object]:
    """Liveness probe for clients that only reach ``/api``."""
    now = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {"ok": True, "service": SERVICE_NAME, "time": now}


@router.get("/ready")
async def readiness() -> dict[str, object]:
    """Readiness probe: checks DB and Redis connectivity."""
    checks: dict[str, object] = {}

    try:
        async with get_engine().connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
        checks["database"] = "ok"
    except Exception as exc:  # noqa: BLE001
        checks["database"] = f"error: {exc}"

    try:
        redis = get_redis()
        await redis.ping()
        checks["redis"] = "ok"
    except Exception as exc:  # noqa: BLE001
        checks["redis"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
