"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from cart_recovery import __version__
from cart_recovery.api.v1.deps import get_engine
from cart_recovery.config import Settings, get_settings
from cart_recovery.infrastructure.database.connection import ping
from cart_recovery.services.factory import Engine

logger = structlog.get_logger()

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    ready: bool
    checks: dict[str, bool]


def scheduler_state(settings: Settings, engine: Engine) -> str:
    if not settings.reminder_scheduler_enabled and not engine.scheduler.running:
        return "disabled"
    return "running" if engine.scheduler.running else "stopped"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    engine: Engine = Depends(get_engine),
) -> HealthResponse:
    """
    Report service version and how reminders are being delivered.

    Load balancers only look at the status code; the dependency block is for
    humans checking which email backend and scheduler mode are live.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=engine.clock.now().isoformat(),
        dependencies={
            "postgres": "configured",
            "email": settings.email_service,
            "scheduler": scheduler_state(settings, engine),
            "reminder_tiers": [tier.reminder_type for tier in engine.policy.tiers],
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(engine: Engine = Depends(get_engine)) -> ReadinessResponse:
    """Ready once the cart database answers."""
    checks: dict[str, bool] = {}

    try:
        checks["database"] = await ping(engine.carts.session_factory)
    except Exception:
        logger.warning("Database readiness check failed", exc_info=True)
        checks["database"] = False

    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
