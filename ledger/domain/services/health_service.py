"""
Health checks - database and Celery broker.

Two levels:
- liveness: the process is up (no dependency checks)
- readiness: every external dependency answers
"""
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from ledger.core.config import settings
from ledger.core.logging import get_logger
from ledger.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# No infrastructure details in responses
_ERROR_DB = "error: db_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db() -> str:
    """Lightweight query against the primary database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("Database health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_celery() -> str:
    """PING the Celery broker (Redis)."""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("Celery broker health check failed", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness() -> dict[str, Any]:
    """
    Readiness check of every external dependency.

    Returns a dict with the overall status ("healthy" or "degraded") and
    "ok" / "error: ..." for db and celery.
    """
    checks = {
        "db": await _check_db(),
        "celery": await _check_celery(),
    }

    all_ok = all(v == _CHECK_OK for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
