"""Create users and payments tables.

Revision ID: create_users_and_payments
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'create_users_and_payments'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('phone_number', sa.String(20), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('subscription_plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('subscription_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )

    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('transaction_id', sa.String(32), nullable=False, unique=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='KES'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='mpesa'),
        sa.Column('payment_type', sa.String(30), nullable=False),
        sa.Column('subscription_plan', sa.String(20), nullable=True),
        sa.Column('phone_number', sa.String(20), nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('account_reference', sa.String(50), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('merchant_request_id', sa.String(100), nullable=True),
        sa.Column('checkout_request_id', sa.String(100), nullable=True, index=True),
        sa.Column('mpesa_receipt_number', sa.String(50), nullable=True),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('result_code', sa.Integer(), nullable=True),
        sa.Column('result_description', sa.Text(), nullable=True),
        sa.Column('callback_received', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('callback_data', sa.JSON(), nullable=True),
        sa.Column('reconciliation_required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source', sa.String(10), nullable=False, server_default='web'),
        sa.Column('user_agent', sa.String(255), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('initiated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )

    # Owner history queries filter by user and status
    op.create_index('ix_payments_user_status', 'payments', ['user_id', 'status'])

    # Expiry sweep only looks at active rows
    op.create_index(
        'ix_payments_active_expires_at',
        'payments',
        ['expires_at'],
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )


def downgrade() -> None:
    op.drop_index('ix_payments_active_expires_at', table_name='payments')
    op.drop_index('ix_payments_user_status', table_name='payments')
    op.drop_table('payments')
    op.drop_table('users')
