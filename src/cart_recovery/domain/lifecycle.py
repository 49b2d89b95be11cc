"""Lifecycle classification of carts by inactivity."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from cart_recovery.clock import ensure_utc
from cart_recovery.domain.cart import Cart, CartState
from cart_recovery.exceptions import ConfigurationError


@dataclass(frozen=True)
class LifecycleThresholds:
    stale: timedelta
    abandoned: timedelta

    def __post_init__(self) -> None:
        if self.stale <= timedelta(0) or self.abandoned <= timedelta(0):
            raise ConfigurationError("Lifecycle thresholds must be positive durations")
        if self.stale >= self.abandoned:
            raise ConfigurationError(
                f"Stale threshold ({self.stale}) must be shorter than "
                f"abandoned threshold ({self.abandoned})"
            )


def cart_age(cart: Cart, now: datetime) -> timedelta:
    """Time since the cart's last genuine activity."""
    return ensure_utc(now) - ensure_utc(cart.last_activity_at)


def classify(cart: Cart, now: datetime, thresholds: LifecycleThresholds) -> CartState:
    if cart.is_retired:
        return CartState.CONVERTED
    if cart.is_empty:
        return CartState.EMPTY

    age = cart_age(cart, now)
    if age < thresholds.stale:
        return CartState.ACTIVE
    if age < thresholds.abandoned:
        return CartState.STALE
    return CartState.ABANDONED
