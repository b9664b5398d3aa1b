"""Create RFQ, quote and negotiation tables

Revision ID: q001
Revises:
Create Date: 2026-10-18

This migration creates the tables for:
- Marketplace users and seller products referenced by quotes
- RFQs, quotes and quote line items
- Negotiation entries (one row per offer round)
- Order intents written when a quote is accepted
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'q001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=True, unique=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('business_name', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('verification_tier', sa.String(), nullable=False, server_default=sa.text("'basic'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('seller_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('is_service', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('status', sa.String(), nullable=False, server_default=sa.text("'active'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])
    op.create_index('ix_products_seller_status', 'products', ['seller_id', 'status'])

    op.create_table(
        'rfqs',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('buyer_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.String(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('budget_min', sa.Numeric(12, 2), nullable=True),
        sa.Column('budget_max', sa.Numeric(12, 2), nullable=True),
        sa.Column('delivery_timeline', sa.String(100), nullable=True),
        sa.Column('delivery_location', sa.Text(), nullable=True),
        # active, completed, expired, cancelled
        sa.Column('status', sa.String(), nullable=False, server_default=sa.text("'active'")),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_rfqs_buyer_id', 'rfqs', ['buyer_id'])
    op.create_index('ix_rfqs_status_expires_at', 'rfqs', ['status', 'expires_at'])

    op.create_table(
        'quotes',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('rfq_id', sa.String(), sa.ForeignKey('rfqs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seller_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('original_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_timeline', sa.String(100), nullable=True),
        sa.Column('terms_conditions', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        # pending, negotiating, accepted, rejected, expired, withdrawn
        sa.Column('status', sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),

        # One quote per seller per RFQ
        sa.UniqueConstraint('rfq_id', 'seller_id', name='uq_quote_rfq_seller'),
    )
    op.create_index('ix_quotes_rfq_id', 'quotes', ['rfq_id'])
    op.create_index('ix_quotes_seller_id', 'quotes', ['seller_id'])
    op.create_index('ix_quotes_status_valid_until', 'quotes', ['status', 'valid_until'])

    op.create_table(
        'quote_items',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('quote_id', sa.String(), sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_quote_items_quote_id', 'quote_items', ['quote_id'])

    op.create_table(
        'negotiation_entries',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('quote_id', sa.String(), sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('from_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('to_user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('offer_type', sa.String(20), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),

        # Two offers can never claim the same round on a quote
        sa.UniqueConstraint('quote_id', 'round_number', name='uq_negotiation_quote_round'),
    )
    op.create_index('ix_negotiation_entries_quote_created', 'negotiation_entries', ['quote_id', 'created_at'])
    op.create_index('ix_negotiation_entries_from_status', 'negotiation_entries', ['from_user_id', 'status'])
    op.create_index('ix_negotiation_entries_to_status', 'negotiation_entries', ['to_user_id', 'status'])
    op.create_index('ix_negotiation_entries_status_valid_until', 'negotiation_entries', ['status', 'valid_until'])

    op.create_table(
        'order_intents',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('rfq_id', sa.String(), sa.ForeignKey('rfqs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quote_id', sa.String(), sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('buyer_id', sa.String(), nullable=False),
        sa.Column('seller_id', sa.String(), nullable=False),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_order_intents_rfq_id', 'order_intents', ['rfq_id'])
    op.create_index('ix_order_intents_buyer_id', 'order_intents', ['buyer_id'])
    op.create_index('ix_order_intents_seller_id', 'order_intents', ['seller_id'])


def downgrade() -> None:
    op.drop_table('order_intents')
    op.drop_table('negotiation_entries')
    op.drop_table('quote_items')
    op.drop_table('quotes')
    op.drop_table('rfqs')
    op.drop_table('products')
    op.drop_table('users')
