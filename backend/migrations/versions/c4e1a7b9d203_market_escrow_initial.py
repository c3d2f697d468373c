"""market escrow initial schema

Revision ID: c4e1a7b9d203
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c4e1a7b9d203'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_phone', 'users', ['phone'], unique=True)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('balance_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('balance_minor >= 0', name='ck_wallet_balance_non_negative'),
    )
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'], unique=True)

    op.create_table(
        'wallet_txns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=80), nullable=False),
        sa.Column('note', sa.String(length=240), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'kind', 'direction', 'reference', name='uq_wallet_txn_posting'),
    )
    op.create_index('ix_wallet_txns_wallet_id', 'wallet_txns', ['wallet_id'])
    op.create_index('ix_wallet_txns_user_id', 'wallet_txns', ['user_id'])
    op.create_index('ix_wallet_txns_reference', 'wallet_txns', ['reference'])

    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=160), nullable=False),
        sa.Column('category', sa.String(length=16), nullable=False),
        sa.Column('delivery_type', sa.String(length=16), nullable=False),
        sa.Column('price_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('stock_qty', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_listings_seller_id', 'listings', ['seller_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('buyer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_minor', sa.BigInteger(), nullable=False),
        sa.Column('amount_minor', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('delivery_kind', sa.String(length=16), nullable=False),
        sa.Column('delivery_address_json', sa.Text(), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('in_escrow_at', sa.DateTime(), nullable=True),
        sa.Column('out_for_delivery_at', sa.DateTime(), nullable=True),
        sa.Column('deliverable_uploaded_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('released_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('disputed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_quantity_positive'),
        sa.CheckConstraint('amount_minor >= 0', name='ck_order_amount_non_negative'),
        sa.CheckConstraint('version >= 0', name='ck_order_version_non_negative'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_listing_id', 'orders', ['listing_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'escrow_ledger',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('amount_locked_minor', sa.BigInteger(), nullable=False),
        sa.Column('fee_minor', sa.BigInteger(), nullable=False),
        sa.Column('total_debit_minor', sa.BigInteger(), nullable=False),
        sa.Column('fee_bps', sa.Integer(), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_escrow_ledger_order_id', 'escrow_ledger', ['order_id'], unique=True)

    op.create_table(
        'order_otps',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('otp_hash', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_order_otps_order_id', 'order_otps', ['order_id'], unique=True)

    op.create_table(
        'deliverables',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('storage_path_full', sa.String(length=1024), nullable=False),
        sa.Column('storage_path_preview', sa.String(length=1024), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_deliverables_order_id', 'deliverables', ['order_id'], unique=True)
    op.create_index('ix_deliverables_seller_id', 'deliverables', ['seller_id'])

    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('opened_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reason', sa.String(length=1000), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('resolution', sa.String(length=24), nullable=True),
        sa.Column('admin_note', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_disputes_order_id', 'disputes', ['order_id'], unique=True)
    op.create_index('ix_disputes_opened_by', 'disputes', ['opened_by'])

    op.create_table(
        'chain_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('chain', sa.String(length=32), nullable=False),
        sa.Column('chain_id', sa.Integer(), nullable=False),
        sa.Column('rpc_url', sa.String(length=512), nullable=True),
        sa.Column('usdc_address', sa.String(length=64), nullable=False),
        sa.Column('escrow_address', sa.String(length=64), nullable=False),
        sa.Column('confirmations_required', sa.Integer(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_chain_configs_chain', 'chain_configs', ['chain'], unique=True)
    op.create_index('ix_chain_configs_active', 'chain_configs', ['active'])

    op.create_table(
        'crypto_wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('chain', sa.String(length=32), nullable=False),
        sa.Column('address', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'chain', name='uq_crypto_wallet_user_chain'),
    )
    op.create_index('ix_crypto_wallets_user_id', 'crypto_wallets', ['user_id'])

    op.create_table(
        'crypto_escrows',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('order_key', sa.String(length=66), nullable=False, unique=True),
        sa.Column('chain', sa.String(length=32), nullable=False),
        sa.Column('buyer_wallet', sa.String(length=64), nullable=False),
        sa.Column('seller_wallet', sa.String(length=64), nullable=False),
        sa.Column('token_address', sa.String(length=64), nullable=False),
        sa.Column('escrow_address', sa.String(length=64), nullable=False),
        sa.Column('amount_units', sa.Numeric(20, 6), nullable=False),
        sa.Column('amount_raw', sa.String(length=80), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_crypto_escrows_order_id', 'crypto_escrows', ['order_id'], unique=True)

    op.create_table(
        'crypto_intents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.String(length=36), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('intent_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('chain', sa.String(length=32), nullable=False),
        sa.Column('from_wallet', sa.String(length=64), nullable=True),
        sa.Column('to_wallet', sa.String(length=64), nullable=True),
        sa.Column('amount_units', sa.Numeric(20, 6), nullable=True),
        sa.Column('amount_raw', sa.String(length=80), nullable=True),
        sa.Column('tx_hash', sa.String(length=80), nullable=True),
        sa.Column('failure_reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('order_id', 'intent_type', name='uq_crypto_intent_order_type'),
    )
    op.create_index('ix_crypto_intents_order_id', 'crypto_intents', ['order_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('actor_type', sa.String(length=16), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('payload_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    for table in (
        'audit_logs',
        'crypto_intents',
        'crypto_escrows',
        'crypto_wallets',
        'chain_configs',
        'disputes',
        'deliverables',
        'order_otps',
        'escrow_ledger',
        'orders',
        'listings',
        'wallet_txns',
        'wallets',
        'users',
    ):
        op.drop_table(table)
