"""Unit tests for engine wiring and shutdown."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cart_recovery.config import Settings
from cart_recovery.integrations.ecommerce_gateway import EcommerceGatewayClient
from cart_recovery.services.factory import Engine, build_engine
from email_worker.services.sendgrid_transport import SendGridTransport


class TestEngineClients:
    @pytest.mark.asyncio
    async def test_aclose_closes_clients_it_created(
        self, test_settings: Settings, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        settings = test_settings.model_copy(update={"email_service": "sendgrid", "sendgrid_api_key": "sg-key"})
        engine = build_engine(settings, session_factory=session_factory)

        clients = list(engine.owned_clients)
        assert [type(client) for client in clients] == [EcommerceGatewayClient, SendGridTransport]

        await engine.aclose()

        assert all(client.client.is_closed for client in clients)
        assert engine.owned_clients == []

    @pytest.mark.asyncio
    async def test_injected_collaborators_are_left_open(self, engine: Engine) -> None:
        assert engine.owned_clients == []
        await engine.aclose()

    @pytest.mark.asyncio
    async def test_mock_sender_needs_no_closing(
        self, test_settings: Settings, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        engine = build_engine(test_settings, session_factory=session_factory)

        assert [type(client) for client in engine.owned_clients] == [EcommerceGatewayClient]
        await engine.aclose()
