"""SQLAlchemy models for carts and the reminder ledger.

Timestamps are stored as naive UTC. Lifecycle state is never persisted; it is
always derived from the columns below.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Carts
# =============================================================================


class CartRecord(Base):
    """One shopping cart, keyed by the anonymous session key."""

    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    last_activity_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Terminal markers
    converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    conversion_ref: Mapped[Optional[str]] = mapped_column(String(255))
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    merged_into_id: Mapped[Optional[str]] = mapped_column(String(64))
    retired_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    line_items: Mapped[list["CartLineItemRecord"]] = relationship(
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartLineItemRecord.position",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_carts_total_non_negative"),
        Index(
            "ix_carts_reminder_candidates",
            "converted",
            "merged_into_id",
            "last_activity_at",
        ),
    )


class CartLineItemRecord(Base):
    """Ordered line item of a cart."""

    __tablename__ = "cart_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cart_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_ref: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_ref: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    cart: Mapped[CartRecord] = relationship(back_populates="line_items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_cart_line_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_cart_line_items_price_non_negative"),
        Index("ix_cart_line_items_cart_position", "cart_id", "position"),
    )


# =============================================================================
# Email Events (reminder ledger)
# =============================================================================


class EmailEventRecord(Base):
    """Confirmed reminder send. Inserted once, never updated or deleted."""

    __tablename__ = "email_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reminder_type: Mapped[str] = mapped_column(String(64), nullable=False)
    cart_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("carts.id"), nullable=False, index=True
    )
    recipient: Mapped[str] = mapped_column(String(320), nullable=False)
    message_id: Mapped[Optional[str]] = mapped_column(String(255))
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("reminder_type", "cart_id", name="uq_email_events_type_cart"),
    )
