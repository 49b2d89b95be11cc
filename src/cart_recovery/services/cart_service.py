"""Cart activity, identity merge, conversion and status queries."""

from dataclasses import dataclass
from datetime import timedelta

import structlog

from cart_recovery.clock import Clock
from cart_recovery.domain.cart import Cart, CartState, LineItem
from cart_recovery.domain.lifecycle import LifecycleThresholds, cart_age, classify
from cart_recovery.exceptions import (
    CartConvertedError,
    CartNotFoundError,
    CurrencyMismatchError,
    OwnershipError,
)
from cart_recovery.integrations import CatalogProvider
from cart_recovery.repositories.carts import CartRepository
from cart_recovery.repositories.event_ledger import EventLedgerRepository

logger = structlog.get_logger()


@dataclass(frozen=True)
class CartStatus:
    cart: Cart
    state: CartState
    idle_for: timedelta


@dataclass(frozen=True)
class ConversionResult:
    cart: Cart
    newly_converted: bool
    reminders_sent: int


def merge_line_items(*carts: Cart) -> list[LineItem]:
    """Union of all items; quantities of the same product/variant are summed.

    First-seen order is kept for display.
    """
    merged: dict[tuple[str, str | None], LineItem] = {}
    for cart in carts:
        for item in cart.line_items:
            existing = merged.get(item.key)
            if existing is None:
                merged[item.key] = item
            else:
                merged[item.key] = LineItem(
                    product_ref=item.product_ref,
                    variant_ref=item.variant_ref,
                    quantity=existing.quantity + item.quantity,
                    unit_price=existing.unit_price,
                )
    return list(merged.values())


class CartService:
    """Entry points used by the storefront and the checkout signal."""

    def __init__(
        self,
        carts: CartRepository,
        ledger: EventLedgerRepository,
        catalog: CatalogProvider,
        thresholds: LifecycleThresholds,
        clock: Clock,
    ):
        self.carts = carts
        self.ledger = ledger
        self.catalog = catalog
        self.thresholds = thresholds
        self.clock = clock

    def status_of(self, cart: Cart) -> CartStatus:
        now = self.clock.now()
        return CartStatus(
            cart=cart,
            state=classify(cart, now, self.thresholds),
            idle_for=cart_age(cart, now),
        )

    async def sync_cart(
        self,
        session_key: str,
        line_items: list[LineItem],
        currency: str,
        owner_id: str | None = None,
    ) -> CartStatus:
        """Full-state activity sync. Last write wins; activity clock resets."""
        cart = await self.carts.save_activity(
            session_key=session_key,
            line_items=line_items,
            currency=currency,
            now=self.clock.now(),
            owner_id=owner_id,
        )
        logger.info(
            "Cart synced",
            cart_id=cart.id,
            owner_id=cart.owner_id,
            item_count=cart.item_count,
        )
        return self.status_of(cart)

    async def get_status(self, session_key: str, caller_id: str | None = None) -> CartStatus:
        cart = await self.carts.get_by_session_key(session_key)
        if cart is None:
            raise CartNotFoundError("Cart not found")
        if cart.owner_id and caller_id != cart.owner_id:
            raise OwnershipError("Cart belongs to another identity")
        return self.status_of(cart)

    async def merge_on_login(self, session_key: str, owner_id: str) -> CartStatus:
        """Reconcile the session's cart with carts the identity already owns.

        The session cart survives. Items are unioned with quantities summed,
        every line is repriced from the catalog, the activity clock resets and
        the other carts are retired rather than deleted.
        """
        session_cart = await self.carts.get_by_session_key(session_key)
        if session_cart is None:
            raise CartNotFoundError("Cart not found")
        if session_cart.is_retired:
            raise CartConvertedError("Cart is no longer writable")
        if session_cart.owner_id and session_cart.owner_id != owner_id:
            raise OwnershipError("Cart belongs to another identity")

        owned = await self.carts.find_owned_carts(owner_id, exclude_id=session_cart.id)
        if not owned:
            cart = session_cart
            if session_cart.owner_id != owner_id:
                cart = await self.carts.link_owner(session_cart.id, owner_id, self.clock.now())
                logger.info("Cart linked to identity", cart_id=cart.id, owner_id=owner_id)
            return self.status_of(cart)

        sources = [session_cart, *owned]
        currencies = {cart.currency for cart in sources if not cart.is_empty}
        if len(currencies) > 1:
            raise CurrencyMismatchError(
                f"Cannot merge carts priced in {', '.join(sorted(currencies))}"
            )
        currency = currencies.pop() if currencies else session_cart.currency

        merged_items = await self._reprice(merge_line_items(*sources))
        now = self.clock.now()
        cart = await self.carts.apply_merge(
            survivor_id=session_cart.id,
            retired_ids=[cart.id for cart in owned],
            line_items=merged_items,
            currency=currency,
            owner_id=owner_id,
            now=now,
        )
        logger.info(
            "Carts merged on login",
            cart_id=cart.id,
            owner_id=owner_id,
            retired_cart_ids=[c.id for c in owned],
            item_count=cart.item_count,
        )
        return self.status_of(cart)

    async def _reprice(self, items: list[LineItem]) -> list[LineItem]:
        repriced = []
        for item in items:
            price = await self.catalog.get_unit_price(item.product_ref, item.variant_ref)
            repriced.append(
                LineItem(
                    product_ref=item.product_ref,
                    variant_ref=item.variant_ref,
                    quantity=item.quantity,
                    unit_price=price,
                )
            )
        return repriced

    async def record_conversion(
        self,
        order_ref: str,
        session_key: str | None = None,
        cart_id: str | None = None,
    ) -> ConversionResult:
        """Consume the checkout-completion signal. Safe to deliver twice."""
        if not session_key and not cart_id:
            raise CartNotFoundError("A session key or cart id is required")

        cart, newly_converted = await self.carts.mark_converted(
            order_ref=order_ref,
            now=self.clock.now(),
            cart_id=cart_id,
            session_key=session_key,
        )
        events = await self.ledger.list_for_cart(cart.id)

        if not newly_converted:
            logger.info(
                "Conversion already recorded",
                cart_id=cart.id,
                conversion_ref=cart.conversion_ref,
            )
        elif events:
            # Analytics event; identifiers only, no contact details.
            logger.info(
                "cart_recovered",
                cart_id=cart.id,
                owner_id=cart.owner_id,
                reminders_sent=len(events),
                last_reminder_type=events[-1].reminder_type,
            )
        else:
            logger.info("Cart converted", cart_id=cart.id, owner_id=cart.owner_id)

        return ConversionResult(cart=cart, newly_converted=newly_converted, reminders_sent=len(events))
