"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cart_recovery.api.v1.deps import get_engine
from cart_recovery.clock import ManualClock
from cart_recovery.config import Settings, get_settings
from cart_recovery.domain.cart import Cart, LineItem
from cart_recovery.exceptions import PricingUnavailableError
from cart_recovery.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from cart_recovery.infrastructure.database.models import Base
from cart_recovery.integrations import CustomerContact, SendResult
from cart_recovery.main import create_app
from cart_recovery.services.factory import Engine, build_engine

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeTransport:
    """Records sends; ``mode`` switches between ok, fail, raise and hang."""

    def __init__(self) -> None:
        self.mode = "ok"
        self.delay = 0.0
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipient: str, template_kind: str, payload: dict[str, Any]) -> SendResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.mode == "hang":
            await asyncio.sleep(3600)
        if self.mode == "raise":
            raise ConnectionError("mail relay unreachable")
        if self.mode == "fail":
            return SendResult(status="failed", error="rejected")
        self.sent.append({"recipient": recipient, "template_kind": template_kind, "payload": payload})
        return SendResult(status="sent", message_id=f"msg-{len(self.sent)}")


class FakeIdentity:
    def __init__(self) -> None:
        self.contacts: dict[str, CustomerContact] = {}

    def add(self, owner_id: str, email: str, consent: bool | None = True, first_name: str = "Ada") -> None:
        self.contacts[owner_id] = CustomerContact(
            owner_id=owner_id,
            email=email,
            first_name=first_name,
            reminder_consent=consent,
        )

    async def get_contact(self, owner_id: str) -> CustomerContact | None:
        return self.contacts.get(owner_id)


class FakeCatalog:
    def __init__(self) -> None:
        self.prices: dict[str, Decimal] = {}

    async def get_unit_price(self, product_ref: str, variant_ref: str | None = None) -> Decimal:
        try:
            return self.prices[product_ref]
        except KeyError:
            raise PricingUnavailableError(f"No current price for {product_ref}") from None


class FakeCoupons:
    def __init__(self) -> None:
        self.valid: set[str] = set()

    async def is_coupon_valid(self, code: str) -> bool:
        return code in self.valid


# =============================================================================
# Settings, clock and storage
# =============================================================================


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=False,
        database_url_override=f"sqlite+aiosqlite:///{tmp_path / 'carts.db'}",
        secret_key="test-secret",
        admin_api_key="test-admin-key",
        frontend_url="https://shop.local",
        reminder_scheduler_enabled=False,
        reminder_dispatch_timeout_seconds=0.2,
        mock_email_storage_path=str(tmp_path / "emails"),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = get_async_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def identity() -> FakeIdentity:
    identity = FakeIdentity()
    identity.add("user-1", "ada@shopper.io")
    return identity


@pytest.fixture
def catalog() -> FakeCatalog:
    catalog = FakeCatalog()
    catalog.prices.update({"sku-1": Decimal("25.00"), "sku-2": Decimal("4.00")})
    return catalog


@pytest.fixture
def coupons() -> FakeCoupons:
    return FakeCoupons()


@pytest.fixture
def engine_factory(
    session_factory: async_sessionmaker[AsyncSession],
    clock: ManualClock,
    transport: FakeTransport,
    identity: FakeIdentity,
    catalog: FakeCatalog,
    coupons: FakeCoupons,
) -> Callable[[Settings], Engine]:
    """Build engines that share the fakes and the database."""

    def _build(settings: Settings) -> Engine:
        return build_engine(
            settings,
            session_factory=session_factory,
            clock=clock,
            transport=transport,
            identity=identity,
            catalog=catalog,
            coupons=coupons,
        )

    return _build


@pytest.fixture
def engine(engine_factory: Callable[[Settings], Engine], test_settings: Settings) -> Engine:
    return engine_factory(test_settings)


@pytest.fixture
def make_cart(engine: Engine, clock: ManualClock) -> Callable[..., Awaitable[Cart]]:
    """Sync a cart at the current clock time."""

    async def _make(
        session_key: str = "sess-1",
        owner_id: str | None = "user-1",
        items: list[LineItem] | None = None,
        currency: str = "USD",
    ) -> Cart:
        if items is None:
            items = [LineItem(product_ref="sku-1", quantity=1, unit_price=Decimal("25.00"))]
        return await engine.carts.save_activity(
            session_key=session_key,
            line_items=items,
            currency=currency,
            now=clock.now(),
            owner_id=owner_id,
        )

    return _make


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def app(test_settings: Settings, engine: Engine) -> FastAPI:
    """Create test application."""
    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_engine] = lambda: engine
    return app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": "test-admin-key"}
