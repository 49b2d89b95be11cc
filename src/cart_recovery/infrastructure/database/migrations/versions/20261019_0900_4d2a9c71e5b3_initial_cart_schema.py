"""Initial cart schema

Revision ID: 4d2a9c71e5b3
Revises:
Create Date: 2026-10-19 09:00:41.208311+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4d2a9c71e5b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create carts table
    op.create_table('carts',
    sa.Column('id', sa.String(length=64), nullable=False),
    sa.Column('session_key', sa.String(length=255), nullable=False),
    sa.Column('owner_id', sa.String(length=255), nullable=True),
    sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('last_activity_at', sa.DateTime(), nullable=False),
    sa.Column('converted', sa.Boolean(), nullable=False),
    sa.Column('conversion_ref', sa.String(length=255), nullable=True),
    sa.Column('converted_at', sa.DateTime(), nullable=True),
    sa.Column('merged_into_id', sa.String(length=64), nullable=True),
    sa.Column('retired_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.CheckConstraint('total_amount >= 0', name='ck_carts_total_non_negative'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('session_key')
    )
    op.create_index(op.f('ix_carts_owner_id'), 'carts', ['owner_id'], unique=False)
    op.create_index(op.f('ix_carts_last_activity_at'), 'carts', ['last_activity_at'], unique=False)
    op.create_index('ix_carts_reminder_candidates', 'carts', ['converted', 'merged_into_id', 'last_activity_at'], unique=False)

    # Create cart_line_items table
    op.create_table('cart_line_items',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('cart_id', sa.String(length=64), nullable=False),
    sa.Column('position', sa.Integer(), nullable=False),
    sa.Column('product_ref', sa.String(length=255), nullable=False),
    sa.Column('variant_ref', sa.String(length=255), nullable=True),
    sa.Column('quantity', sa.Integer(), nullable=False),
    sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.CheckConstraint('quantity > 0', name='ck_cart_line_items_quantity_positive'),
    sa.CheckConstraint('unit_price >= 0', name='ck_cart_line_items_price_non_negative'),
    sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cart_line_items_cart_position', 'cart_line_items', ['cart_id', 'position'], unique=False)

    # Create email_events table (reminder ledger)
    op.create_table('email_events',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('reminder_type', sa.String(length=64), nullable=False),
    sa.Column('cart_id', sa.String(length=64), nullable=False),
    sa.Column('recipient', sa.String(length=320), nullable=False),
    sa.Column('message_id', sa.String(length=255), nullable=True),
    sa.Column('sent_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('reminder_type', 'cart_id', name='uq_email_events_type_cart')
    )
    op.create_index(op.f('ix_email_events_cart_id'), 'email_events', ['cart_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_email_events_cart_id'), table_name='email_events')
    op.drop_table('email_events')
    op.drop_index('ix_cart_line_items_cart_position', table_name='cart_line_items')
    op.drop_table('cart_line_items')
    op.drop_index('ix_carts_reminder_candidates', table_name='carts')
    op.drop_index(op.f('ix_carts_last_activity_at'), table_name='carts')
    op.drop_index(op.f('ix_carts_owner_id'), table_name='carts')
    op.drop_table('carts')
