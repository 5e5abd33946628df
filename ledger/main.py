"""
Commission Ledger - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from ledger.core.config import settings
from ledger.core.logging import setup_logging, get_logger
from ledger.core.middleware import setup_middleware, setup_exception_handlers
from ledger.api.routes import router as api_router
from ledger.db.database import engine, audit_engine, Base
from ledger.domain.services.health_service import check_readiness
from ledger.domain.services.rate_config_store import RateConfigStore

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)

_OPENAPI_TAGS = [
    {"name": "wallets", "description": "Wallet balances and transaction history (centavos)."},
    {"name": "cash", "description": "Driver cash debt and cash-order eligibility."},
    {"name": "orders", "description": "Delivery confirmation with atomic commission payout."},
    {"name": "settlements", "description": "Business confirmation of cash received from drivers."},
    {"name": "admin", "description": "Integrity audit, commission rates and repair tools (admin API key)."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Commission distribution, wallet ledger and driver cash-debt tracking.",
    openapi_tags=_OPENAPI_TAGS,
)

# One rate store per process, shared by every request
app.state.rate_store = RateConfigStore()

setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await engine.dispose()
    if audit_engine is not engine:
        await audit_engine.dispose()
    logger.info("Database connections disposed")


@app.get("/health", tags=["health"], summary="Liveness probe")
async def health_check() -> dict[str, str]:
    """The process is up; no dependency checks."""
    return {"status": "healthy"}


@app.get("/health/ready", tags=["health"], summary="Readiness probe")
async def readiness_check():
    """Database and Celery broker reachability. 503 when degraded."""
    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
