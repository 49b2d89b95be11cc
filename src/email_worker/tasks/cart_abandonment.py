"""Cart abandonment reminder tasks."""

import asyncio
from typing import Any

import structlog
from celery import shared_task
from sqlalchemy.exc import OperationalError

from cart_recovery.config import Settings, get_settings
from cart_recovery.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from cart_recovery.services.factory import build_engine

logger = structlog.get_logger()


async def _run_tick(settings: Settings | None = None, **collaborators: Any) -> dict:
    settings = settings or get_settings()
    # A fresh engine per run: each task invocation owns its own event loop.
    db_engine = get_async_engine(settings)
    try:
        engine = build_engine(settings, session_factory=create_session_factory(db_engine), **collaborators)
        try:
            report = await engine.scheduler.run_once()
        finally:
            await engine.aclose()
        return report.to_dict()
    finally:
        await db_engine.dispose()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def run_cart_reminders(self) -> dict:
    """
    Run one reminder tick.

    Finds carts idle past each reminder threshold, sends the reminders that
    are still due and records them in the ledger. Safe to run concurrently
    with other workers or the API's in-process scheduler.

    Returns:
        dict: Tick report
    """
    logger.info("Running cart reminder tick", attempt=self.request.retries)
    try:
        return asyncio.run(_run_tick())
    except OperationalError as e:
        logger.warning("Database unavailable for reminder tick", error=str(e))
        raise self.retry(exc=e)
