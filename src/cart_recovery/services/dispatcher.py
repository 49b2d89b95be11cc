"""Notification dispatch for a single reminder.

The dispatcher only formats and hands off. It neither decides eligibility nor
writes the ledger; the scheduler records the send after a confirmed receipt.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from cart_recovery.clock import Clock
from cart_recovery.domain.cart import Cart, ReminderTier
from cart_recovery.exceptions import DispatchTimeoutError, TransportError
from cart_recovery.integrations import CustomerContact, NotificationTransport
from cart_recovery.services.recovery_token import RecoveryTokenService

logger = structlog.get_logger()

TEMPLATE_REMINDER = "cart_reminder"
TEMPLATE_FINAL_REMINDER = "cart_reminder_final"


@dataclass(frozen=True)
class DispatchReceipt:
    reminder_type: str
    recipient: str
    sent_at: datetime
    message_id: str | None


class NotificationDispatcher:
    """Sends one reminder through the configured transport."""

    def __init__(
        self,
        transport: NotificationTransport,
        tokens: RecoveryTokenService,
        clock: Clock,
        timeout_seconds: float = 10.0,
        unsubscribe_url: str = "",
    ):
        self.transport = transport
        self.tokens = tokens
        self.clock = clock
        self.timeout_seconds = timeout_seconds
        self.unsubscribe_url = unsubscribe_url or f"{tokens.frontend_url}/unsubscribe"

    def build_payload(
        self,
        cart: Cart,
        tier: ReminderTier,
        contact: CustomerContact,
        discount_code: str | None = None,
    ) -> dict[str, Any]:
        token = self.tokens.issue(cart.session_key)
        payload: dict[str, Any] = {
            "first_name": contact.first_name or "Valued Customer",
            "reminder_type": tier.reminder_type,
            "cart_items": [
                {
                    "product_ref": item.product_ref,
                    "variant_ref": item.variant_ref,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                    "subtotal": str(item.subtotal),
                }
                for item in cart.line_items
            ],
            "total_amount": str(cart.total_amount),
            "currency": cart.currency,
            "recovery_url": self.tokens.build_recovery_url(token, tier.reminder_type),
            "unsubscribe_url": self.unsubscribe_url,
        }
        if discount_code:
            payload["discount_code"] = discount_code
        return payload

    async def dispatch(
        self,
        cart: Cart,
        tier: ReminderTier,
        contact: CustomerContact,
        discount_code: str | None = None,
    ) -> DispatchReceipt:
        """Send the reminder or raise TransportError.

        A call that exceeds the timeout raises DispatchTimeoutError and is
        treated exactly like any other failed send.
        """
        if not contact.email:
            raise TransportError(f"No recipient address for cart {cart.id}")

        template_kind = TEMPLATE_FINAL_REMINDER if tier.is_final else TEMPLATE_REMINDER
        payload = self.build_payload(cart, tier, contact, discount_code)

        try:
            result = await asyncio.wait_for(
                self.transport.send(contact.email, template_kind, payload),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise DispatchTimeoutError(
                f"Transport did not answer within {self.timeout_seconds}s"
            ) from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"Transport raised {type(e).__name__}: {e}") from e

        if result is None or not result.sent:
            error = result.error if result is not None else "no result"
            raise TransportError(f"Transport reported failure: {error}")

        logger.debug(
            "Reminder handed to transport",
            cart_id=cart.id,
            reminder_type=tier.reminder_type,
            template_kind=template_kind,
            message_id=result.message_id,
        )
        return DispatchReceipt(
            reminder_type=tier.reminder_type,
            recipient=contact.email,
            sent_at=self.clock.now(),
            message_id=result.message_id,
        )
