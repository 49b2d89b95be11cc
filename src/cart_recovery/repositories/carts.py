"""Cart store.

Every write recomputes ``total_amount`` from the line items it persists.
Writes are keyed by the natural key (session key) so concurrent first syncs
for one session collapse into a single row.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cart_recovery.clock import ensure_utc, to_naive_utc
from cart_recovery.domain.cart import Cart, LineItem, compute_total, normalize_currency
from cart_recovery.exceptions import (
    CartConvertedError,
    CartNotFoundError,
    CurrencyMismatchError,
    MalformedCartError,
    OwnershipError,
)
from cart_recovery.infrastructure.database.connection import session_scope
from cart_recovery.infrastructure.database.models import CartLineItemRecord, CartRecord

logger = structlog.get_logger()

UPSERT_ATTEMPTS = 2


def new_cart_id() -> str:
    return str(uuid4())


class CartRepository:
    """Persistence for the cart aggregate."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, cart_id: str) -> Cart | None:
        async with self.session_factory() as session:
            record = await session.get(CartRecord, cart_id)
            return self.to_domain(record) if record else None

    async def get_by_session_key(self, session_key: str) -> Cart | None:
        async with self.session_factory() as session:
            record = await self._load_by_session_key(session, session_key)
            return self.to_domain(record) if record else None

    async def find_owned_carts(self, owner_id: str, exclude_id: str | None = None) -> list[Cart]:
        """Live carts already linked to an identity."""
        query = select(CartRecord).where(
            CartRecord.owner_id == owner_id,
            CartRecord.converted.is_(False),
            CartRecord.merged_into_id.is_(None),
        )
        if exclude_id:
            query = query.where(CartRecord.id != exclude_id)
        query = query.order_by(CartRecord.last_activity_at.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [self.to_domain(record) for record in result.scalars().all()]

    async def find_reminder_candidate_ids(
        self,
        idle_before: datetime,
        active_after: datetime | None = None,
    ) -> list[str]:
        """Ids of live, non-empty carts idle since ``idle_before`` or earlier."""
        has_items = exists().where(CartLineItemRecord.cart_id == CartRecord.id)
        query = select(CartRecord.id).where(
            CartRecord.converted.is_(False),
            CartRecord.merged_into_id.is_(None),
            CartRecord.last_activity_at <= to_naive_utc(idle_before),
            has_items,
        )
        if active_after is not None:
            query = query.where(CartRecord.last_activity_at > to_naive_utc(active_after))
        query = query.order_by(CartRecord.last_activity_at)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_idle_carts(self, idle_before: datetime, limit: int = 500) -> list[Cart]:
        """Non-empty, non-merged carts idle since ``idle_before``, converted included.

        Rows that fail to load are logged and left out.
        """
        has_items = exists().where(CartLineItemRecord.cart_id == CartRecord.id)
        query = (
            select(CartRecord)
            .where(
                CartRecord.merged_into_id.is_(None),
                CartRecord.last_activity_at <= to_naive_utc(idle_before),
                has_items,
            )
            .order_by(CartRecord.last_activity_at.desc())
            .limit(limit)
        )

        carts = []
        async with self.session_factory() as session:
            result = await session.execute(query)
            for record in result.scalars().all():
                try:
                    carts.append(self.to_domain(record))
                except MalformedCartError as e:
                    logger.warning("Skipping malformed cart", cart_id=e.cart_id, reason=e.reason)
        return carts

    async def count_live_carts(self) -> int:
        query = select(func.count(CartRecord.id)).where(
            CartRecord.converted.is_(False),
            CartRecord.merged_into_id.is_(None),
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def save_activity(
        self,
        session_key: str,
        line_items: list[LineItem],
        currency: str,
        now: datetime,
        owner_id: str | None = None,
    ) -> Cart:
        """Full-state sync for a session: upsert, replace items, bump activity."""
        currency = normalize_currency(currency)

        for attempt in range(UPSERT_ATTEMPTS):
            try:
                async with session_scope(self.session_factory) as session:
                    record = await self._load_by_session_key(session, session_key, for_update=True)
                    if record is None:
                        record = CartRecord(
                            id=new_cart_id(),
                            session_key=session_key,
                            currency=currency,
                            created_at=to_naive_utc(now),
                            line_items=[],
                        )
                        session.add(record)
                    else:
                        self._guard_activity(record, currency, owner_id)

                    if owner_id:
                        record.owner_id = owner_id
                    self._apply_contents(record, line_items, currency, now)
                    record.last_activity_at = to_naive_utc(now)
                return self.to_domain(record)
            except IntegrityError:
                if attempt == UPSERT_ATTEMPTS - 1:
                    raise
                logger.info("Concurrent cart insert, retrying as update", session_key=session_key)

        raise RuntimeError("unreachable")

    async def link_owner(self, cart_id: str, owner_id: str, now: datetime) -> Cart:
        """Attach an identity to a cart without counting it as activity."""
        async with session_scope(self.session_factory) as session:
            record = await self._load_for_write(session, cart_id)
            if record.owner_id and record.owner_id != owner_id:
                raise OwnershipError(f"Cart {cart_id} belongs to another identity")
            record.owner_id = owner_id
            record.updated_at = to_naive_utc(now)
        return self.to_domain(record)

    async def apply_merge(
        self,
        survivor_id: str,
        retired_ids: list[str],
        line_items: list[LineItem],
        currency: str,
        owner_id: str,
        now: datetime,
    ) -> Cart:
        """Write merged contents to the survivor and retire the other carts."""
        async with session_scope(self.session_factory) as session:
            survivor = await self._load_for_write(session, survivor_id)
            survivor.owner_id = owner_id
            self._apply_contents(survivor, line_items, currency, now)
            survivor.last_activity_at = to_naive_utc(now)

            for cart_id in retired_ids:
                record = await self._load_for_write(session, cart_id)
                record.merged_into_id = survivor_id
                record.retired_at = to_naive_utc(now)
                record.updated_at = to_naive_utc(now)
        return self.to_domain(survivor)

    async def mark_converted(
        self,
        order_ref: str,
        now: datetime,
        cart_id: str | None = None,
        session_key: str | None = None,
    ) -> tuple[Cart, bool]:
        """Set the terminal converted marker once.

        Returns the cart and whether this call performed the conversion.
        """
        async with session_scope(self.session_factory) as session:
            if cart_id:
                record = await session.get(CartRecord, cart_id, with_for_update=True)
            else:
                record = await self._load_by_session_key(session, session_key or "", for_update=True)
            if record is None:
                raise CartNotFoundError(f"No cart for {cart_id or session_key}")

            if record.converted:
                return self.to_domain(record), False

            record.converted = True
            record.conversion_ref = order_ref
            record.converted_at = to_naive_utc(now)
            record.updated_at = to_naive_utc(now)
        return self.to_domain(record), True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _load_by_session_key(
        session: AsyncSession, session_key: str, for_update: bool = False
    ) -> CartRecord | None:
        query = select(CartRecord).where(CartRecord.session_key == session_key)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def _load_for_write(session: AsyncSession, cart_id: str) -> CartRecord:
        record = await session.get(CartRecord, cart_id, with_for_update=True)
        if record is None:
            raise CartNotFoundError(f"Cart {cart_id} not found")
        if record.converted or record.merged_into_id:
            raise CartConvertedError(f"Cart {cart_id} is no longer writable")
        return record

    @staticmethod
    def _guard_activity(record: CartRecord, currency: str, owner_id: str | None) -> None:
        if record.converted or record.merged_into_id:
            raise CartConvertedError(f"Cart {record.id} is no longer writable")
        if owner_id and record.owner_id and record.owner_id != owner_id:
            raise OwnershipError(f"Cart {record.id} belongs to another identity")
        if record.line_items and record.currency != currency:
            raise CurrencyMismatchError(
                f"Cart {record.id} is priced in {record.currency}, not {currency}"
            )

    @staticmethod
    def _apply_contents(
        record: CartRecord, line_items: list[LineItem], currency: str, now: datetime
    ) -> None:
        record.line_items = [
            CartLineItemRecord(
                position=position,
                product_ref=item.product_ref,
                variant_ref=item.variant_ref,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for position, item in enumerate(line_items)
        ]
        record.total_amount = compute_total(line_items)
        record.currency = currency
        record.updated_at = to_naive_utc(now)

    @staticmethod
    def to_domain(record: CartRecord) -> Cart:
        """Convert a row to a validated cart, or raise MalformedCartError."""
        try:
            items = tuple(
                LineItem(
                    product_ref=row.product_ref,
                    variant_ref=row.variant_ref,
                    quantity=row.quantity,
                    unit_price=row.unit_price,
                )
                for row in record.line_items
            )
            if record.last_activity_at is None:
                raise ValueError("missing last_activity_at")
            total = compute_total(items)
            if record.total_amount is not None and Decimal(record.total_amount) != total:
                raise ValueError(f"stored total {record.total_amount} does not match items ({total})")
            return Cart(
                id=record.id,
                session_key=record.session_key,
                owner_id=record.owner_id,
                line_items=items,
                total_amount=total,
                currency=normalize_currency(record.currency),
                last_activity_at=ensure_utc(record.last_activity_at),
                converted=bool(record.converted),
                conversion_ref=record.conversion_ref,
                converted_at=ensure_utc(record.converted_at) if record.converted_at else None,
                merged_into_id=record.merged_into_id,
                created_at=ensure_utc(record.created_at) if record.created_at else None,
            )
        except (ValueError, TypeError, InvalidOperation) as e:
            raise MalformedCartError(record.id, str(e)) from e
