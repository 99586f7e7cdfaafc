"""Initial schema: users, sessions, products, batches, partnerships, QR access, counters, defects

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

This migration adds:
1. users, session_tokens
2. batches, products, product_qr_grants
3. partnerships, qr_access_requests
4. global_counters (atomic named sequences, e.g. nftTokenId)
5. reconciliation_defects (chain-confirmed operations whose mirror write failed)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. USERS AND SESSIONS
    # ==========================================================================
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('company_name', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('batch_counter', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "role IN ('manufacturer', 'distributor', 'warehouse', 'retailer')",
            name='ck_users_role',
        ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_wallet_address'), ['wallet_address'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_role'), ['role'], unique=False)

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_is_revoked'), ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_user_active', ['user_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 2. BATCHES AND PRODUCTS
    # ==========================================================================
    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_batch_number', sa.Integer(), nullable=False),
        sa.Column('metadata_uri', sa.String(length=512), nullable=True),
        sa.Column('nft_token_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('manufacturer_id', 'manufacturer_batch_number', name='uq_batches_mfr_number'),
        sa.UniqueConstraint('nft_token_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('batches', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_batches_batch_id'), ['batch_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_batches_manufacturer_id'), ['manufacturer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_batches_created_at'), ['created_at'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('blockchain_id', sa.Integer(), nullable=False),
        sa.Column('unique_product_id', sa.String(length=128), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('manufacture_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('batch_blockchain_id', sa.Integer(), nullable=True),
        sa.Column('product_number_in_batch', sa.Integer(), nullable=True),
        sa.Column('current_holder_id', sa.Integer(), nullable=True),
        sa.Column('sender_id', sa.Integer(), nullable=True),
        sa.Column('requires_partnership', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('qr_code_url', sa.Text(), nullable=True),
        sa.Column('qr_visible', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('zk_proof', sa.JSON(), nullable=True),
        sa.Column('zk_proof_generated', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('zk_proof_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['current_holder_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_blockchain_id'), ['blockchain_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_products_unique_product_id'), ['unique_product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_manufacturer_id'), ['manufacturer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_batch_id'), ['batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_batch_blockchain_id'), ['batch_blockchain_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_current_holder_id'), ['current_holder_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_sender_id'), ['sender_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_products_manufacturer_created', ['manufacturer_id', 'created_at'], unique=False)

    op.create_table('product_qr_grants',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('product_id', 'user_id')
    )

    # ==========================================================================
    # 3. PARTNERSHIPS AND QR ACCESS
    # ==========================================================================
    op.create_table('partnerships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.Integer(), nullable=False),
        sa.Column('receiver_id', sa.Integer(), nullable=False),
        sa.Column('pair_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sender_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['receiver_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('pair_key', name='uq_partnerships_pair'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('partnerships', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_partnerships_sender_id'), ['sender_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_partnerships_receiver_id'), ['receiver_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_partnerships_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_partnerships_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_partnerships_receiver_status', ['receiver_id', 'status'], unique=False)

    op.create_table('qr_access_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ),
        sa.ForeignKeyConstraint(['retailer_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'retailer_id', 'manufacturer_id', name='uq_qr_access_batch_retailer_mfr'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('qr_access_requests', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_qr_access_requests_batch_id'), ['batch_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_access_requests_retailer_id'), ['retailer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_access_requests_manufacturer_id'), ['manufacturer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_access_requests_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_qr_access_requests_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 4. GLOBAL COUNTERS
    # ==========================================================================
    op.create_table('global_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('global_counters', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_global_counters_name'), ['name'], unique=True)

    # ==========================================================================
    # 5. RECONCILIATION DEFECTS
    # ==========================================================================
    op.create_table('reconciliation_defects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(length=64), nullable=False),
        sa.Column('chain_ref', sa.String(length=128), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('detail', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('reconciliation_defects', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_reconciliation_defects_operation'), ['operation'], unique=False)
        batch_op.create_index(batch_op.f('ix_reconciliation_defects_chain_ref'), ['chain_ref'], unique=False)
        batch_op.create_index(batch_op.f('ix_reconciliation_defects_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index('ix_reconciliation_defects_resolved_created', ['resolved', 'created_at'], unique=False)


def downgrade():
    # Drop tables in reverse order of creation (respect foreign keys)
    op.drop_table('reconciliation_defects')
    op.drop_table('global_counters')
    op.drop_table('qr_access_requests')
    op.drop_table('partnerships')
    op.drop_table('product_qr_grants')
    op.drop_table('products')
    op.drop_table('batches')
    op.drop_table('session_tokens')
    op.drop_table('users')
