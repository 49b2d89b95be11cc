"""Interfaces of the external collaborators the engine consumes."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


@dataclass(frozen=True)
class CustomerContact:
    """Reachability and consent for an identity."""

    owner_id: str
    email: str | None
    first_name: str | None = None
    reminder_consent: bool | None = None


@dataclass
class SendResult:
    """Outcome reported by a notification transport."""

    status: str
    message_id: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def sent(self) -> bool:
        return self.status == "sent"


class IdentityProvider(Protocol):
    async def get_contact(self, owner_id: str) -> CustomerContact | None: ...


class CatalogProvider(Protocol):
    async def get_unit_price(self, product_ref: str, variant_ref: str | None = None) -> Decimal: ...


class CouponProvider(Protocol):
    async def is_coupon_valid(self, code: str) -> bool: ...


class NotificationTransport(Protocol):
    async def send(self, recipient: str, template_kind: str, payload: dict[str, Any]) -> SendResult: ...


__all__ = [
    "CatalogProvider",
    "CouponProvider",
    "CustomerContact",
    "IdentityProvider",
    "NotificationTransport",
    "SendResult",
]
