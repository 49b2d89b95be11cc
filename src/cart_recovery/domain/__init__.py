"""Cart lifecycle domain."""

from cart_recovery.domain.cart import (
    Cart,
    CartState,
    EmailEvent,
    LineItem,
    ReminderTier,
    compute_total,
    normalize_currency,
)
from cart_recovery.domain.lifecycle import LifecycleThresholds, cart_age, classify
from cart_recovery.domain.policy import ReminderPolicy

__all__ = [
    "Cart",
    "CartState",
    "EmailEvent",
    "LifecycleThresholds",
    "LineItem",
    "ReminderPolicy",
    "ReminderTier",
    "cart_age",
    "classify",
    "compute_total",
    "normalize_currency",
]
