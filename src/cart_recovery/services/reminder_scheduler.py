"""Reminder scheduler.

Each tick walks the reminder schedule in ascending order and, for every cart
idle past a tier's threshold, decides whether that tier still has to be sent:

1. the cart is still live and non-empty, and still idle past the threshold
2. the owning identity has granted reminder consent
3. the ledger has no row for (tier, cart)
4. the cart has fewer ledger rows than ``max_reminders``

A confirmed send is recorded in the ledger as the last step. Failed or
timed-out sends leave no ledger row, so the next tick retries them. All state
that decides eligibility lives in the database, which makes overlapping or
concurrent ticks (several processes included) safe.
"""

import asyncio
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from cart_recovery.clock import Clock
from cart_recovery.domain.cart import CartState, EmailEvent, ReminderTier
from cart_recovery.domain.lifecycle import cart_age, classify
from cart_recovery.domain.policy import ReminderPolicy
from cart_recovery.exceptions import MalformedCartError, TransportError
from cart_recovery.integrations import CouponProvider, IdentityProvider
from cart_recovery.repositories.carts import CartRepository
from cart_recovery.repositories.event_ledger import EventLedgerRepository
from cart_recovery.services.dispatcher import NotificationDispatcher

logger = structlog.get_logger()

TEST_RECIPIENT_PATTERNS = [
    re.compile(r"^qa\.", re.IGNORECASE),
    re.compile(r"\.test$", re.IGNORECASE),
    re.compile(r"test@", re.IGNORECASE),
    re.compile(r"demo@", re.IGNORECASE),
    re.compile(r"example\.", re.IGNORECASE),
]


def is_test_recipient(email: str) -> bool:
    return any(pattern.search(email) for pattern in TEST_RECIPIENT_PATTERNS)


class Outcome(str, Enum):
    SENT = "sent"
    DUPLICATE = "duplicates"
    NO_CONSENT = "skipped_no_consent"
    ALREADY_SENT = "skipped_already_sent"
    MAX_REMINDERS = "skipped_max_reminders"
    INELIGIBLE = "skipped_ineligible"
    FAILED = "failed"
    MALFORMED = "malformed"
    ERROR = "errors"


@dataclass
class TickReport:
    """Counters for one scheduler tick."""

    started_at: datetime
    finished_at: datetime | None = None
    evaluated: int = 0
    sent: int = 0
    duplicates: int = 0
    skipped_no_consent: int = 0
    skipped_already_sent: int = 0
    skipped_max_reminders: int = 0
    skipped_ineligible: int = 0
    failed: int = 0
    malformed: int = 0
    errors: int = 0
    sent_by_type: dict[str, int] = field(default_factory=dict)

    def tally(self, outcome: Outcome, reminder_type: str) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)
        if outcome is Outcome.SENT:
            self.sent_by_type[reminder_type] = self.sent_by_type.get(reminder_type, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class ReminderScheduler:
    """Periodic driver of reminder dispatch.

    ``run_once`` performs a single tick and is what the periodic loop, the
    Celery task and the admin trigger all call.
    """

    def __init__(
        self,
        carts: CartRepository,
        ledger: EventLedgerRepository,
        dispatcher: NotificationDispatcher,
        identity: IdentityProvider,
        policy: ReminderPolicy,
        clock: Clock,
        coupons: CouponProvider | None = None,
        interval_seconds: float = 3600,
        initial_delay_seconds: float | None = None,
        concurrency: int = 5,
        suppress_test_recipients: bool = False,
    ):
        self.carts = carts
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.identity = identity
        self.policy = policy
        self.clock = clock
        self.coupons = coupons
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = interval_seconds if initial_delay_seconds is None else initial_delay_seconds
        self.concurrency = concurrency
        self.suppress_test_recipients = suppress_test_recipients

        self.last_report: TickReport | None = None
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_forever(), name="reminder-scheduler")
        logger.info(
            "Reminder scheduler started",
            interval_seconds=self.interval_seconds,
            initial_delay_seconds=self.initial_delay_seconds,
        )

    async def stop(self) -> None:
        if not self.running:
            return
        assert self._stop_event is not None and self._task is not None
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.dispatcher.timeout_seconds + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("Reminder scheduler stopped")

    async def _wait_for_stop(self, seconds: float) -> bool:
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_forever(self) -> None:
        # A restart does not tick immediately; the first run comes after the initial delay.
        delay = self.initial_delay_seconds
        while not await self._wait_for_stop(delay):
            try:
                await self.run_once()
            except Exception:
                logger.exception("Reminder tick failed")
            delay = self.interval_seconds

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def run_once(self) -> TickReport:
        now = self.clock.now()
        report = TickReport(started_at=now)
        semaphore = asyncio.Semaphore(self.concurrency)
        active_after = now - self.policy.max_cart_age if self.policy.max_cart_age else None

        for tier in self.policy.tiers:
            try:
                cart_ids = await self.carts.find_reminder_candidate_ids(
                    idle_before=now - tier.threshold,
                    active_after=active_after,
                )
            except Exception:
                logger.exception("Candidate query failed", reminder_type=tier.reminder_type)
                report.errors += 1
                continue

            if not cart_ids:
                continue

            discount_code = await self._discount_code_for(tier)

            async def bounded(cart_id: str) -> None:
                async with semaphore:
                    await self._process(cart_id, tier, now, discount_code, report)

            # Tiers run one after another so a cart's earlier tier is always
            # decided before its later ones within a tick.
            await asyncio.gather(*(bounded(cart_id) for cart_id in cart_ids))

        report.finished_at = self.clock.now()
        self.last_report = report
        logger.info("Reminder tick finished", **report.to_dict())
        return report

    async def _process(
        self,
        cart_id: str,
        tier: ReminderTier,
        now: datetime,
        discount_code: str | None,
        report: TickReport,
    ) -> None:
        report.evaluated += 1
        try:
            outcome = await self._evaluate_and_send(cart_id, tier, now, discount_code)
        except Exception:
            logger.exception(
                "Unexpected error processing cart",
                cart_id=cart_id,
                reminder_type=tier.reminder_type,
            )
            outcome = Outcome.ERROR
        report.tally(outcome, tier.reminder_type)

    async def _evaluate_and_send(
        self,
        cart_id: str,
        tier: ReminderTier,
        now: datetime,
        discount_code: str | None,
    ) -> Outcome:
        log = logger.bind(cart_id=cart_id, reminder_type=tier.reminder_type)

        try:
            cart = await self.carts.get(cart_id)
        except MalformedCartError as e:
            log.warning("Skipping malformed cart", reason=e.reason)
            return Outcome.MALFORMED
        if cart is None:
            return Outcome.INELIGIBLE

        # The cart may have changed since the candidate query ran.
        state = classify(cart, now, self.policy.thresholds)
        if state in (CartState.EMPTY, CartState.CONVERTED):
            log.info("Cart no longer eligible", state=state.value)
            return Outcome.INELIGIBLE
        age = cart_age(cart, now)
        if age < tier.threshold:
            log.info("Cart saw new activity", state=state.value)
            return Outcome.INELIGIBLE
        if self.policy.max_cart_age and age > self.policy.max_cart_age:
            return Outcome.INELIGIBLE

        if not cart.owner_id:
            log.info("Skipping guest cart without identity")
            return Outcome.NO_CONSENT
        contact = await self.identity.get_contact(cart.owner_id)
        if contact is None or contact.reminder_consent is not True or not contact.email:
            log.info("Skipping cart without reminder consent", owner_id=cart.owner_id)
            return Outcome.NO_CONSENT
        if self.suppress_test_recipients and is_test_recipient(contact.email):
            log.info("Skipping test recipient", owner_id=cart.owner_id)
            return Outcome.INELIGIBLE

        if await self.ledger.has_event(tier.reminder_type, cart.id):
            return Outcome.ALREADY_SENT
        if await self.ledger.count_for_cart(cart.id) >= self.policy.max_reminders:
            log.info("Reminder cap reached", max_reminders=self.policy.max_reminders)
            return Outcome.MAX_REMINDERS

        try:
            receipt = await self.dispatcher.dispatch(
                cart,
                tier,
                contact,
                discount_code=discount_code if tier.is_final else None,
            )
        except TransportError as e:
            log.warning("Reminder dispatch failed, will retry next tick", error=str(e))
            return Outcome.FAILED

        recorded = await self.ledger.record(
            EmailEvent(
                reminder_type=tier.reminder_type,
                cart_id=cart.id,
                recipient=receipt.recipient,
                sent_at=receipt.sent_at,
                message_id=receipt.message_id,
            )
        )
        if not recorded:
            return Outcome.DUPLICATE

        log.info(
            "cart_reminder_sent",
            owner_id=cart.owner_id,
            state=state.value,
            item_count=cart.item_count,
        )
        return Outcome.SENT

    async def _discount_code_for(self, tier: ReminderTier) -> str | None:
        code = self.policy.final_discount_code
        if not tier.is_final or not code or self.coupons is None:
            return None
        try:
            if await self.coupons.is_coupon_valid(code):
                return code
        except Exception:
            logger.exception("Coupon validation failed", code=code)
            return None
        logger.info("Final reminder discount code is no longer valid", code=code)
        return None
