"""Narrow per-aggregate repositories."""

from cart_recovery.repositories.carts import CartRepository
from cart_recovery.repositories.event_ledger import EventLedgerRepository

__all__ = ["CartRepository", "EventLedgerRepository"]
