"""Abandoned-cart reporting for the admin surface."""

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from cart_recovery.clock import Clock
from cart_recovery.domain.cart import Cart
from cart_recovery.domain.policy import ReminderPolicy
from cart_recovery.repositories.carts import CartRepository
from cart_recovery.repositories.event_ledger import EventLedgerRepository

ANALYTICS_PERIODS = [
    (timedelta(hours=1), "1 Hour"),
    (timedelta(hours=24), "24 Hours"),
    (timedelta(days=3), "3 Days"),
    (timedelta(weeks=1), "1 Week"),
]


@dataclass(frozen=True)
class AbandonmentStats:
    total_abandoned: int
    total_value: Decimal
    average_value: Decimal
    recovered: int
    recovery_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_abandoned": self.total_abandoned,
            "total_value": str(self.total_value),
            "average_value": str(self.average_value),
            "recovered": self.recovered,
            "recovery_rate": self.recovery_rate,
        }


def was_abandoned(cart: Cart, window: timedelta) -> bool:
    """A cart counts as abandoned if it sat idle for the whole window.

    Converted carts count only when checkout came after the idle window,
    i.e. the cart was recovered.
    """
    if not cart.converted:
        return True
    return cart.converted_at is not None and cart.converted_at - cart.last_activity_at >= window


def summarize(carts: list[Cart]) -> AbandonmentStats:
    total = len(carts)
    value = sum((cart.total_amount for cart in carts), Decimal("0.00"))
    recovered = sum(1 for cart in carts if cart.converted)
    return AbandonmentStats(
        total_abandoned=total,
        total_value=value,
        average_value=(value / total).quantize(Decimal("0.01")) if total else Decimal("0.00"),
        recovered=recovered,
        recovery_rate=round(recovered / total * 100, 2) if total else 0.0,
    )


class AbandonmentAnalytics:
    def __init__(
        self,
        carts: CartRepository,
        ledger: EventLedgerRepository,
        policy: ReminderPolicy,
        clock: Clock,
    ):
        self.carts = carts
        self.ledger = ledger
        self.policy = policy
        self.clock = clock

    async def abandoned_carts(self, window: timedelta, limit: int = 500) -> tuple[list[Cart], AbandonmentStats]:
        idle = await self.carts.list_idle_carts(self.clock.now() - window, limit=limit)
        abandoned = [cart for cart in idle if was_abandoned(cart, window)]
        return abandoned, summarize(abandoned)

    async def period_breakdown(self) -> list[dict[str, Any]]:
        rows = []
        for window, label in ANALYTICS_PERIODS:
            _, stats = await self.abandoned_carts(window)
            rows.append(
                {
                    "period_hours": int(window.total_seconds() // 3600),
                    "period_label": label,
                    **stats.to_dict(),
                }
            )
        return rows

    async def reminder_stats(self) -> dict[str, Any]:
        """Candidates per tier right now and reminders sent per type so far."""
        now = self.clock.now()
        active_after = now - self.policy.max_cart_age if self.policy.max_cart_age else None
        candidates = {}
        for tier in self.policy.tiers:
            ids = await self.carts.find_reminder_candidate_ids(now - tier.threshold, active_after)
            candidates[tier.reminder_type] = len(ids)

        sent = await self.ledger.count_by_type()
        return {
            "candidates": candidates,
            "emails_sent": {**sent, "total": sum(sent.values())},
            "live_carts": await self.carts.count_live_carts(),
        }
