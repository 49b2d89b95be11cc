"""Unit tests for the reminder ledger."""

from collections.abc import Awaitable, Callable
from datetime import timedelta

import pytest

from cart_recovery.clock import ManualClock
from cart_recovery.domain.cart import Cart, EmailEvent
from cart_recovery.services.factory import Engine


def _event(cart: Cart, reminder_type: str, clock: ManualClock) -> EmailEvent:
    return EmailEvent(
        reminder_type=reminder_type,
        cart_id=cart.id,
        recipient="ada@shopper.io",
        sent_at=clock.now(),
        message_id="msg-1",
    )


class TestEventLedger:
    @pytest.mark.asyncio
    async def test_pair_is_recorded_once(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        cart = await make_cart()

        assert await engine.ledger.record(_event(cart, "abandoned_cart_1h", clock)) is True
        assert await engine.ledger.record(_event(cart, "abandoned_cart_1h", clock)) is False

        assert await engine.ledger.count_for_cart(cart.id) == 1
        assert await engine.ledger.has_event("abandoned_cart_1h", cart.id)
        assert not await engine.ledger.has_event("abandoned_cart_24h", cart.id)

    @pytest.mark.asyncio
    async def test_tiers_and_carts_are_independent(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        first = await make_cart(session_key="sess-1")
        second = await make_cart(session_key="sess-2")

        assert await engine.ledger.record(_event(first, "abandoned_cart_1h", clock))
        clock.advance(timedelta(hours=23))
        assert await engine.ledger.record(_event(first, "abandoned_cart_24h", clock))
        assert await engine.ledger.record(_event(second, "abandoned_cart_1h", clock))

        events = await engine.ledger.list_for_cart(first.id)
        assert [event.reminder_type for event in events] == ["abandoned_cart_1h", "abandoned_cart_24h"]
        assert events[0].sent_at < events[1].sent_at
        assert await engine.ledger.count_by_type() == {"abandoned_cart_1h": 2, "abandoned_cart_24h": 1}
