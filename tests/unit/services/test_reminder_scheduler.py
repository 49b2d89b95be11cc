"""Unit tests for the reminder scheduler."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cart_recovery.clock import ManualClock, to_naive_utc
from cart_recovery.config import Settings
from cart_recovery.domain.cart import Cart, EmailEvent
from cart_recovery.infrastructure.database.connection import session_scope
from cart_recovery.infrastructure.database.models import CartLineItemRecord, CartRecord
from cart_recovery.services.factory import Engine
from cart_recovery.services.reminder_scheduler import is_test_recipient

MINUTE = timedelta(minutes=1)


async def _reminder_types(engine: Engine, cart: Cart) -> list[str]:
    return [event.reminder_type for event in await engine.ledger.list_for_cart(cart.id)]


class TestReminderTimeline:
    @pytest.mark.asyncio
    async def test_each_tier_sent_once_at_its_threshold(
        self,
        engine: Engine,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        transport,
    ) -> None:
        start = clock.now()
        cart = await make_cart()

        clock.set(start + 65 * MINUTE)
        report = await engine.scheduler.run_once()
        assert report.sent == 1
        assert report.sent_by_type == {"abandoned_cart_1h": 1}
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h"]

        clock.set(start + 70 * MINUTE)
        report = await engine.scheduler.run_once()
        assert report.sent == 0
        assert report.skipped_already_sent == 1
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h"]

        clock.set(start + 1445 * MINUTE)
        report = await engine.scheduler.run_once()
        assert report.sent == 1
        assert report.sent_by_type == {"abandoned_cart_24h": 1}
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h", "abandoned_cart_24h"]

        clock.set(start + 2000 * MINUTE)
        report = await engine.scheduler.run_once()
        assert report.sent == 0
        assert await engine.ledger.count_for_cart(cart.id) == 2

        assert [send["template_kind"] for send in transport.sent] == ["cart_reminder", "cart_reminder_final"]

    @pytest.mark.asyncio
    async def test_nothing_before_first_threshold(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        await make_cart()
        clock.advance(59 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.evaluated == 0
        assert report.sent == 0

    @pytest.mark.asyncio
    async def test_late_first_tick_sends_earliest_tier_first(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        cart = await make_cart()
        clock.advance(25 * timedelta(hours=1))

        report = await engine.scheduler.run_once()

        assert report.sent == 2
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h", "abandoned_cart_24h"]

    @pytest.mark.asyncio
    async def test_activity_resets_the_clock(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        cart = await make_cart()
        clock.advance(50 * MINUTE)
        await make_cart()
        clock.advance(15 * MINUTE)

        assert (await engine.scheduler.run_once()).sent == 0

        clock.advance(50 * MINUTE)
        assert (await engine.scheduler.run_once()).sent == 1
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h"]

    @pytest.mark.asyncio
    async def test_cap_counts_every_reminder(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        cart = await make_cart()
        for reminder_type in ("legacy_reminder_a", "legacy_reminder_b"):
            await engine.ledger.record(
                EmailEvent(
                    reminder_type=reminder_type,
                    cart_id=cart.id,
                    recipient="ada@shopper.io",
                    sent_at=clock.now(),
                )
            )
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.skipped_max_reminders == 1
        assert report.sent == 0

    @pytest.mark.asyncio
    async def test_max_age_cutoff(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        await make_cart()
        clock.advance(timedelta(days=3, minutes=1))

        report = await engine.scheduler.run_once()
        assert report.evaluated == 0
        assert report.sent == 0


class TestEligibility:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("consent", [False, None])
    async def test_no_consent_no_reminder(
        self,
        engine: Engine,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        identity,
        transport,
        consent: bool | None,
    ) -> None:
        identity.add("user-1", "ada@shopper.io", consent=consent)
        cart = await make_cart()
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.skipped_no_consent == 1
        assert transport.sent == []
        assert await engine.ledger.count_for_cart(cart.id) == 0

    @pytest.mark.asyncio
    async def test_guest_and_unknown_owner_skipped(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock, transport
    ) -> None:
        await make_cart(session_key="guest", owner_id=None)
        await make_cart(session_key="stranger", owner_id="user-404")
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.evaluated == 2
        assert report.skipped_no_consent == 2
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_converted_cart_gets_nothing_more(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        cart = await make_cart()
        clock.advance(65 * MINUTE)
        assert (await engine.scheduler.run_once()).sent == 1

        await engine.cart_service.record_conversion("order-1", session_key="sess-1")
        clock.advance(timedelta(days=1))

        report = await engine.scheduler.run_once()
        assert report.sent == 0
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h"]

    @pytest.mark.asyncio
    async def test_empty_cart_never_reminded(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock
    ) -> None:
        await make_cart(items=[])
        clock.advance(timedelta(days=2))

        report = await engine.scheduler.run_once()
        assert report.evaluated == 0

    @pytest.mark.asyncio
    async def test_malformed_cart_skipped_without_aborting_tick(
        self,
        engine: Engine,
        session_factory: async_sessionmaker[AsyncSession],
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
    ) -> None:
        good = await make_cart()
        async with session_scope(session_factory) as session:
            session.add(
                CartRecord(
                    id="broken",
                    session_key="sess-broken",
                    owner_id="user-1",
                    currency="USD",
                    total_amount=Decimal("10.00"),
                    last_activity_at=to_naive_utc(clock.now()),
                    created_at=to_naive_utc(clock.now()),
                    updated_at=to_naive_utc(clock.now()),
                    line_items=[
                        CartLineItemRecord(position=0, product_ref="", quantity=1, unit_price=Decimal("10.00"))
                    ],
                )
            )
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.malformed == 1
        assert report.sent == 1
        assert await _reminder_types(engine, good) == ["abandoned_cart_1h"]

    def test_test_recipient_patterns(self) -> None:
        assert is_test_recipient("qa.lead@shopper.io")
        assert is_test_recipient("someone@shop.test")
        assert is_test_recipient("test@shopper.io")
        assert is_test_recipient("demo@shopper.io")
        assert not is_test_recipient("ada@shopper.io")

    @pytest.mark.asyncio
    async def test_test_recipients_suppressed_when_enabled(
        self,
        engine_factory: Callable[[Settings], Engine],
        test_settings: Settings,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        identity,
        transport,
    ) -> None:
        identity.add("user-1", "qa.lead@shopper.io")
        engine = engine_factory(test_settings.model_copy(update={"suppress_test_recipients": True}))
        await make_cart()
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.skipped_ineligible == 1
        assert transport.sent == []


class TestDispatchFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["fail", "raise", "hang"])
    async def test_failed_send_is_retried_next_tick(
        self,
        engine: Engine,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        transport,
        mode: str,
    ) -> None:
        cart = await make_cart()
        clock.advance(65 * MINUTE)

        transport.mode = mode
        report = await engine.scheduler.run_once()
        assert report.failed == 1
        assert report.sent == 0
        assert await engine.ledger.count_for_cart(cart.id) == 0

        transport.mode = "ok"
        clock.advance(MINUTE)
        report = await engine.scheduler.run_once()
        assert report.sent == 1
        assert await _reminder_types(engine, cart) == ["abandoned_cart_1h"]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_other_carts(
        self,
        engine: Engine,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        identity,
    ) -> None:
        identity.add("user-2", "grace@shopper.io")
        first = await make_cart(session_key="sess-1", owner_id="user-1")
        second = await make_cart(session_key="sess-2", owner_id="user-2")

        async def flaky_contact(owner_id: str):
            if owner_id == "user-1":
                raise RuntimeError("identity service exploded")
            return identity.contacts.get(owner_id)

        engine.scheduler.identity.get_contact = flaky_contact
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.errors == 1
        assert report.sent == 1
        assert await engine.ledger.count_for_cart(first.id) == 0
        assert await _reminder_types(engine, second) == ["abandoned_cart_1h"]


class TestConcurrentSchedulers:
    @pytest.mark.asyncio
    async def test_overlapping_ticks_record_each_reminder_once(
        self,
        engine_factory: Callable[[Settings], Engine],
        test_settings: Settings,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        transport,
    ) -> None:
        cart = await make_cart()
        clock.advance(65 * MINUTE)
        transport.delay = 0.05

        first = engine_factory(test_settings)
        second = engine_factory(test_settings)
        reports = await asyncio.gather(first.scheduler.run_once(), second.scheduler.run_once())

        assert sum(report.sent for report in reports) == 1
        assert await _reminder_types(first, cart) == ["abandoned_cart_1h"]

    @pytest.mark.asyncio
    async def test_many_carts_in_one_tick(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock, identity
    ) -> None:
        for index in range(12):
            identity.add(f"user-{index}", f"shopper{index}@shopper.io")
            await make_cart(session_key=f"sess-{index}", owner_id=f"user-{index}")
        clock.advance(65 * MINUTE)

        report = await engine.scheduler.run_once()
        assert report.evaluated == 12
        assert report.sent == 12
        assert (await engine.ledger.count_by_type()) == {"abandoned_cart_1h": 12}


class TestFinalReminderDiscount:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(("valid", "expected"), [(True, "COMEBACK10"), (False, None)])
    async def test_discount_only_on_final_tier_when_valid(
        self,
        engine_factory: Callable[[Settings], Engine],
        test_settings: Settings,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
        coupons,
        transport,
        valid: bool,
        expected: str | None,
    ) -> None:
        if valid:
            coupons.valid.add("COMEBACK10")
        engine = engine_factory(
            test_settings.model_copy(update={"abandoned_final_discount_code": "COMEBACK10"})
        )
        await make_cart()
        clock.advance(25 * timedelta(hours=1))

        assert (await engine.scheduler.run_once()).sent == 2

        first, final = transport.sent
        assert "discount_code" not in first["payload"]
        assert final["payload"].get("discount_code") == expected


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_a_tick_and_stop_ends_loop(
        self,
        engine_factory: Callable[[Settings], Engine],
        test_settings: Settings,
        make_cart: Callable[..., Awaitable[Cart]],
        clock: ManualClock,
    ) -> None:
        engine = engine_factory(test_settings.model_copy(update={"reminder_initial_delay_seconds": 0}))
        await make_cart()
        clock.advance(65 * MINUTE)

        await engine.scheduler.start()
        assert engine.scheduler.running
        for _ in range(100):
            if engine.scheduler.last_report is not None:
                break
            await asyncio.sleep(0.01)
        await engine.scheduler.stop()

        assert not engine.scheduler.running
        assert engine.scheduler.last_report.sent == 1

    @pytest.mark.asyncio
    async def test_first_tick_waits_one_interval(
        self, engine: Engine, make_cart: Callable[..., Awaitable[Cart]], clock: ManualClock, transport
    ) -> None:
        await make_cart()
        clock.advance(65 * MINUTE)

        await engine.scheduler.start()
        await asyncio.sleep(0.05)
        await engine.scheduler.stop()

        assert engine.scheduler.initial_delay_seconds == engine.scheduler.interval_seconds
        assert engine.scheduler.last_report is None
        assert transport.sent == []
