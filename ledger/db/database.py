"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from ledger.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# The auditor only reads, so it may point at a replica
audit_engine = (
    create_async_engine(settings.AUDIT_DATABASE_URL, echo=settings.DEBUG, pool_pre_ping=True)
    if settings.AUDIT_DATABASE_URL
    else engine
)

AuditSessionLocal = async_sessionmaker(
    bind=audit_engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_audit_db() -> AsyncSession:
    """Dependency for the read-only audit session"""
    async with AuditSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_task_session():
    """
    Create a fresh database session for Celery tasks.

    A new engine bound to the current event loop avoids the "attached to a
    different loop" error when module-level engines are reused across the
    loops that run_async creates for every task.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )
    task_session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with task_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()

    await task_engine.dispose()
