#!/usr/bin/env python3
"""
Seed database with demo carts for development.

Creates carts at different points of the abandonment lifecycle so the
admin analytics and a manual reminder run have something to work on.
Run it against an empty database.

Usage:
    python scripts/seed_data.py
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from cart_recovery.config import get_settings
from cart_recovery.domain.cart import EmailEvent, LineItem
from cart_recovery.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from cart_recovery.infrastructure.database.models import Base
from cart_recovery.repositories import CartRepository, EventLedgerRepository

PRODUCTS = {
    "prod-001": Decimal("299.99"),  # Wireless Noise-Canceling Headphones
    "prod-002": Decimal("149.99"),  # Mechanical Gaming Keyboard
    "prod-003": Decimal("399.99"),  # Ergonomic Office Chair
    "prod-005": Decimal("199.99"),  # Standing Desk Converter
    "prod-006": Decimal("79.99"),  # Wireless Mouse
}

# (session key, owner, products, idle for)
CARTS = [
    ("demo-alice", "user-001", ["prod-001"], timedelta(minutes=5)),
    ("demo-bob", "user-002", ["prod-003", "prod-005"], timedelta(minutes=30)),
    ("demo-charlie", "user-003", ["prod-002", "prod-006"], timedelta(hours=2)),
    ("demo-dana", "user-004", ["prod-006"], timedelta(hours=26)),
    ("demo-guest", None, ["prod-001", "prod-006"], timedelta(hours=5)),
    ("demo-stale-guest", None, ["prod-002"], timedelta(days=5)),
]


async def seed_carts(carts: CartRepository) -> dict[str, str]:
    """Seed carts with backdated activity."""
    now = datetime.now(timezone.utc)
    ids = {}
    for session_key, owner_id, product_refs, idle_for in CARTS:
        cart = await carts.save_activity(
            session_key=session_key,
            line_items=[
                LineItem(product_ref=ref, quantity=1, unit_price=PRODUCTS[ref]) for ref in product_refs
            ],
            currency="USD",
            now=now - idle_for,
            owner_id=owner_id,
        )
        ids[session_key] = cart.id

    print(f"Created {len(ids)} sample carts")
    return ids


async def seed_history(carts: CartRepository, ledger: EventLedgerRepository, ids: dict[str, str]) -> None:
    """Dana already got the first reminder; Charlie's cart was recovered."""
    now = datetime.now(timezone.utc)
    await ledger.record(
        EmailEvent(
            reminder_type="abandoned_cart_1h",
            cart_id=ids["demo-dana"],
            recipient="dana@shopper.io",
            sent_at=now - timedelta(hours=25),
            message_id="seed-1",
        )
    )
    await carts.mark_converted("order-seed-1", now, cart_id=ids["demo-charlie"])

    print("Recorded 1 reminder and 1 conversion")


async def main():
    """Run seeding."""
    print("Seeding database with demo carts...")
    print("=" * 50)

    settings = get_settings()
    engine = get_async_engine(settings)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        session_factory = create_session_factory(engine)
        carts = CartRepository(session_factory)
        ledger = EventLedgerRepository(session_factory)

        ids = await seed_carts(carts)
        await seed_history(carts, ledger, ids)
    finally:
        await engine.dispose()

    print("=" * 50)
    print("Seeding complete!")


if __name__ == "__main__":
    asyncio.run(main())
