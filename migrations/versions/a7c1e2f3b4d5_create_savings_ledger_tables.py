"""create savings ledger tables

Revision ID: a7c1e2f3b4d5
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c1e2f3b4d5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create savings_goals, bookings, transactions, contributions, notifications."""
    op.create_table(
        'savings_goals',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('target_amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('current_amount', sa.Numeric(precision=20, scale=2), nullable=False,
                  server_default='0'),
        sa.Column('progress', sa.Numeric(precision=12, scale=2), nullable=False,
                  server_default='0'),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default='false', index=True),
        sa.Column('frequency', sa.String(16), nullable=False),
        sa.Column('amount_per_frequency', sa.Numeric(precision=20, scale=2), nullable=False,
                  server_default='0'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('target_date', sa.Date(), nullable=True),
        sa.Column('last_contribution', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('trip_id', sa.String(64), nullable=True, index=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.CheckConstraint('target_amount > 0', name='ck_savings_goals_target_positive'),
    )

    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('trip_id', sa.String(64), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('category', sa.String(32), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reference', sa.String(255), nullable=True, index=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('saving_id', sa.Integer(), sa.ForeignKey('savings_goals.id'), nullable=True, index=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=True, index=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now(), index=True),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )

    op.create_table(
        'contributions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('saving_id', sa.Integer(),
                  sa.ForeignKey('savings_goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('method', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('date', sa.TIMESTAMP(timezone=True), nullable=False, index=True),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('transactions.id'), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.UniqueConstraint('transaction_id', name='uq_contributions_transaction_id'),
        sa.UniqueConstraint('idempotency_key', name='uq_contributions_idempotency_key'),
        sa.CheckConstraint('amount > 0', name='ck_contributions_amount_positive'),
    )
    op.create_index('ix_contributions_saving_status', 'contributions', ['saving_id', 'status'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), nullable=False, index=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('code', sa.String(64), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('saving_id', sa.Integer(), nullable=True, index=True),
        sa.Column('action_url', sa.String(255), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop savings ledger tables."""
    op.drop_index('ix_notifications_user_created', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_contributions_saving_status', table_name='contributions')
    op.drop_table('contributions')
    op.drop_table('transactions')
    op.drop_table('bookings')
    op.drop_table('savings_goals')
