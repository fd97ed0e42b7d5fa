"""Celery tasks for manually triggered lifecycle sweeps."""

import asyncio
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.services.lifecycle_coordinator import LifecycleCoordinator
from app.workers.celery_app import celery_app

# Create async engine for database operations
engine = create_async_engine(str(settings.DATABASE_URL), echo=False, pool_pre_ping=True)
AsyncSessionLocal = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False  # type: ignore
)


def _get_event_loop() -> asyncio.AbstractEventLoop:
    # Get or create event loop for Celery solo pool
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop


def _build_coordinator() -> LifecycleCoordinator:
    """Coordinator without timers; the worker only runs sweeps."""
    return LifecycleCoordinator(AsyncSessionLocal)


@celery_app.task(name="app.workers.tasks.run_orphan_detection_sweep", bind=True)
def run_orphan_detection_sweep(self: Any) -> dict[str, Any]:
    """
    Detect orphaned resources for every owner with AWS credentials.

    Returns:
        Dict with sweep counters
    """
    coordinator = _build_coordinator()
    stats = _get_event_loop().run_until_complete(coordinator.run_orphan_detection_sweep())
    return {"status": "completed", **stats}


@celery_app.task(name="app.workers.tasks.run_rightsizing_sweep", bind=True)
def run_rightsizing_sweep(self: Any) -> dict[str, Any]:
    """
    Analyze every running instance of every owner with AWS credentials.

    Returns:
        Dict with sweep counters
    """
    coordinator = _build_coordinator()
    stats = _get_event_loop().run_until_complete(coordinator.run_rightsizing_sweep())
    return {"status": "completed", **stats}
