"""Wiring of the engine's components from settings."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cart_recovery.clock import Clock, SystemClock
from cart_recovery.config import Settings
from cart_recovery.domain.policy import ReminderPolicy
from cart_recovery.infrastructure.database.connection import get_session_factory
from cart_recovery.integrations import (
    CatalogProvider,
    CouponProvider,
    IdentityProvider,
    NotificationTransport,
)
from cart_recovery.integrations.ecommerce_gateway import EcommerceGatewayClient
from cart_recovery.repositories import CartRepository, EventLedgerRepository
from cart_recovery.services.analytics import AbandonmentAnalytics
from cart_recovery.services.cart_service import CartService
from cart_recovery.services.dispatcher import NotificationDispatcher
from cart_recovery.services.recovery_token import RecoveryService, RecoveryTokenService
from cart_recovery.services.reminder_scheduler import ReminderScheduler

logger = structlog.get_logger()


def build_transport(settings: Settings) -> NotificationTransport:
    if settings.email_service == "sendgrid":
        from email_worker.services.sendgrid_transport import SendGridTransport

        return SendGridTransport(settings)

    from email_worker.services.mock_email_sender import MockEmailSender

    return MockEmailSender(
        storage_path=settings.mock_email_storage_path,
        from_email=settings.email_from_address,
    )


@dataclass
class Engine:
    policy: ReminderPolicy
    clock: Clock
    carts: CartRepository
    ledger: EventLedgerRepository
    tokens: RecoveryTokenService
    dispatcher: NotificationDispatcher
    scheduler: ReminderScheduler
    cart_service: CartService
    recovery: RecoveryService
    analytics: AbandonmentAnalytics
    # HTTP clients created here rather than injected; closed by aclose()
    owned_clients: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for client in self.owned_clients:
            try:
                await client.close()
            except Exception:
                logger.warning("Failed to close client", client=type(client).__name__, exc_info=True)
        self.owned_clients.clear()


def build_engine(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
    transport: NotificationTransport | None = None,
    identity: IdentityProvider | None = None,
    catalog: CatalogProvider | None = None,
    coupons: CouponProvider | None = None,
) -> Engine:
    """Assemble the engine. Raises ConfigurationError on a bad configuration."""
    policy = ReminderPolicy.from_settings(settings)
    clock = clock or SystemClock()
    session_factory = session_factory or get_session_factory()
    owned_clients: list[Any] = []

    if identity is None or catalog is None or coupons is None:
        gateway = EcommerceGatewayClient(settings)
        owned_clients.append(gateway)
        identity = identity or gateway
        catalog = catalog or gateway
        coupons = coupons or gateway

    carts = CartRepository(session_factory)
    ledger = EventLedgerRepository(session_factory)
    tokens = RecoveryTokenService(
        secret=settings.secret_key,
        ttl=timedelta(hours=settings.recovery_token_ttl_hours),
        clock=clock,
        frontend_url=settings.frontend_url,
    )
    if transport is None:
        transport = build_transport(settings)
        if hasattr(transport, "close"):
            owned_clients.append(transport)
    dispatcher = NotificationDispatcher(
        transport=transport,
        tokens=tokens,
        clock=clock,
        timeout_seconds=settings.reminder_dispatch_timeout_seconds,
    )
    scheduler = ReminderScheduler(
        carts=carts,
        ledger=ledger,
        dispatcher=dispatcher,
        identity=identity,
        policy=policy,
        clock=clock,
        coupons=coupons,
        interval_seconds=settings.reminder_interval_seconds,
        initial_delay_seconds=settings.reminder_initial_delay_seconds,
        concurrency=settings.reminder_dispatch_concurrency,
        suppress_test_recipients=settings.should_suppress_test_recipients,
    )

    return Engine(
        policy=policy,
        clock=clock,
        carts=carts,
        ledger=ledger,
        tokens=tokens,
        dispatcher=dispatcher,
        scheduler=scheduler,
        cart_service=CartService(carts, ledger, catalog, policy.thresholds, clock),
        recovery=RecoveryService(tokens, carts),
        analytics=AbandonmentAnalytics(carts, ledger, policy, clock),
        owned_clients=owned_clients,
    )
