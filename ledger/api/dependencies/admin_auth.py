"""
API key check for the admin finance endpoints.

Usage:
    @router.get("/audit")
    async def run_audit(
        _: None = Depends(require_admin_api_key),
    ):
        ...
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from ledger.core.config import settings
from ledger.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    Validate the admin API key.

    401 when the header is missing, 403 when it does not match.
    With no ADMIN_API_KEY configured every request is refused.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint refused: ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key: X-Admin-API-Key header required",
        )

    if api_key != settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint refused: wrong API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
