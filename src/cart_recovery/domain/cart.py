"""Cart aggregate and reminder ledger types."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

CENTS = Decimal("0.01")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


class CartState(str, Enum):
    """Lifecycle states. Always derived, never stored."""

    EMPTY = "empty"
    ACTIVE = "active"
    STALE = "stale"
    ABANDONED = "abandoned"
    CONVERTED = "converted"


@dataclass(frozen=True)
class LineItem:
    """A single product line in a cart."""

    product_ref: str
    quantity: int
    unit_price: Decimal
    variant_ref: str | None = None

    def __post_init__(self) -> None:
        if not self.product_ref:
            raise ValueError("product_ref must not be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError(f"quantity must be a positive integer, got {self.quantity!r}")
        price = Decimal(str(self.unit_price))
        if not price.is_finite() or price < 0:
            raise ValueError(f"unit_price must be non-negative, got {self.unit_price!r}")
        # Stored as Numeric(12,2); totals must be computed from the stored price
        object.__setattr__(self, "unit_price", price.quantize(CENTS, rounding=ROUND_HALF_UP))

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.product_ref, self.variant_ref)

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


def compute_total(line_items: tuple[LineItem, ...] | list[LineItem]) -> Decimal:
    """Sum of quantity x unit price, rounded to cents."""
    total = sum((item.subtotal for item in line_items), Decimal("0"))
    return total.quantize(CENTS)


def normalize_currency(currency: str) -> str:
    code = (currency or "").strip().upper()
    if not CURRENCY_PATTERN.match(code):
        raise ValueError(f"currency must be a 3-letter ISO code, got {currency!r}")
    return code


@dataclass(frozen=True)
class Cart:
    """Snapshot of a stored cart."""

    id: str
    session_key: str
    currency: str
    last_activity_at: datetime
    line_items: tuple[LineItem, ...] = ()
    total_amount: Decimal = Decimal("0.00")
    owner_id: str | None = None
    converted: bool = False
    conversion_ref: str | None = None
    converted_at: datetime | None = None
    merged_into_id: str | None = None
    created_at: datetime | None = None

    @property
    def is_empty(self) -> bool:
        return not self.line_items

    @property
    def is_retired(self) -> bool:
        """Converted at checkout or merged into another cart."""
        return self.converted or self.merged_into_id is not None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.line_items)


@dataclass(frozen=True)
class ReminderTier:
    """One step of the reminder schedule."""

    threshold: timedelta
    position: int
    is_final: bool = False
    reminder_type: str = field(default="")

    def __post_init__(self) -> None:
        if not self.reminder_type:
            object.__setattr__(self, "reminder_type", reminder_type_for(self.threshold))


def reminder_type_for(threshold: timedelta) -> str:
    """abandoned_cart_1h for whole hours, abandoned_cart_90m otherwise."""
    minutes = int(threshold.total_seconds() // 60)
    if minutes % 60 == 0:
        return f"abandoned_cart_{minutes // 60}h"
    return f"abandoned_cart_{minutes}m"


@dataclass(frozen=True)
class EmailEvent:
    """Ledger entry: reminder_type was sent for cart_id."""

    reminder_type: str
    cart_id: str
    recipient: str
    sent_at: datetime
    message_id: str | None = None
