"""Operator endpoints: manual ticks, scheduler control and abandonment stats."""

from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cart_recovery.api.v1.carts import CartResponse, serialize_cart
from cart_recovery.api.v1.deps import get_engine
from cart_recovery.services.factory import Engine

router = APIRouter()


class SchedulerStatusResponse(BaseModel):
    running: bool
    interval_seconds: float
    tiers: list[str]
    last_report: dict[str, Any] | None


class AbandonedCartsResponse(BaseModel):
    window_minutes: int
    carts: list[CartResponse]
    stats: dict[str, Any]


def _scheduler_status(engine: Engine) -> SchedulerStatusResponse:
    scheduler = engine.scheduler
    return SchedulerStatusResponse(
        running=scheduler.running,
        interval_seconds=scheduler.interval_seconds,
        tiers=[tier.reminder_type for tier in engine.policy.tiers],
        last_report=scheduler.last_report.to_dict() if scheduler.last_report else None,
    )


@router.post("/reminders/run")
async def run_reminders(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """
    Run one reminder tick now.

    Same code path as the periodic run; safe to call while the scheduler is
    running since the ledger keeps each reminder single-send.
    """
    report = await engine.scheduler.run_once()
    return report.to_dict()


@router.get("/reminders/stats")
async def reminder_stats(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return await engine.analytics.reminder_stats()


@router.get("/scheduler", response_model=SchedulerStatusResponse)
async def scheduler_status(engine: Engine = Depends(get_engine)) -> SchedulerStatusResponse:
    return _scheduler_status(engine)


@router.post("/scheduler/start", response_model=SchedulerStatusResponse)
async def start_scheduler(engine: Engine = Depends(get_engine)) -> SchedulerStatusResponse:
    await engine.scheduler.start()
    return _scheduler_status(engine)


@router.post("/scheduler/stop", response_model=SchedulerStatusResponse)
async def stop_scheduler(engine: Engine = Depends(get_engine)) -> SchedulerStatusResponse:
    await engine.scheduler.stop()
    return _scheduler_status(engine)


@router.get("/abandoned-carts", response_model=AbandonedCartsResponse)
async def abandoned_carts(
    minutes: int = Query(60, ge=1, le=43200, description="Idle window in minutes"),
    limit: int = Query(500, ge=1, le=5000),
    engine: Engine = Depends(get_engine),
) -> AbandonedCartsResponse:
    """Carts idle for at least `minutes` with their value and recovery stats."""
    carts, stats = await engine.analytics.abandoned_carts(timedelta(minutes=minutes), limit=limit)
    return AbandonedCartsResponse(
        window_minutes=minutes,
        carts=[serialize_cart(cart) for cart in carts],
        stats=stats.to_dict(),
    )


@router.get("/cart-analytics")
async def cart_analytics(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {"periods": await engine.analytics.period_breakdown()}
