"""Reminder ledger.

The unique constraint on (reminder_type, cart_id) is the only thing that
stops two scheduler instances from both recording the same reminder; the
``has_event`` lookup is just a fast path.
"""

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cart_recovery.clock import ensure_utc, to_naive_utc
from cart_recovery.domain.cart import EmailEvent
from cart_recovery.infrastructure.database.connection import session_scope
from cart_recovery.infrastructure.database.models import EmailEventRecord

logger = structlog.get_logger()


class EventLedgerRepository:
    """Append-only store of confirmed reminder sends."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, event: EmailEvent) -> bool:
        """Insert a ledger row.

        Returns False when the pair is already recorded, which means another
        writer got there first.
        """
        try:
            async with session_scope(self.session_factory) as session:
                session.add(
                    EmailEventRecord(
                        reminder_type=event.reminder_type,
                        cart_id=event.cart_id,
                        recipient=event.recipient,
                        message_id=event.message_id,
                        sent_at=to_naive_utc(event.sent_at),
                    )
                )
        except IntegrityError:
            logger.info(
                "Reminder already recorded",
                reminder_type=event.reminder_type,
                cart_id=event.cart_id,
            )
            return False
        return True

    async def has_event(self, reminder_type: str, cart_id: str) -> bool:
        query = select(EmailEventRecord.id).where(
            EmailEventRecord.reminder_type == reminder_type,
            EmailEventRecord.cart_id == cart_id,
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.first() is not None

    async def count_for_cart(self, cart_id: str) -> int:
        query = select(func.count(EmailEventRecord.id)).where(EmailEventRecord.cart_id == cart_id)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar() or 0

    async def list_for_cart(self, cart_id: str) -> list[EmailEvent]:
        query = (
            select(EmailEventRecord)
            .where(EmailEventRecord.cart_id == cart_id)
            .order_by(EmailEventRecord.sent_at, EmailEventRecord.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [
                EmailEvent(
                    reminder_type=row.reminder_type,
                    cart_id=row.cart_id,
                    recipient=row.recipient,
                    sent_at=ensure_utc(row.sent_at),
                    message_id=row.message_id,
                )
                for row in result.scalars().all()
            ]

    async def count_by_type(self) -> dict[str, int]:
        query = select(EmailEventRecord.reminder_type, func.count(EmailEventRecord.id)).group_by(
            EmailEventRecord.reminder_type
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return {reminder_type: count for reminder_type, count in result.all()}
