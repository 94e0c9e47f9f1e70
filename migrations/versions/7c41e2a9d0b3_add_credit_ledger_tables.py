"""add credit ledger tables

Revision ID: 7c41e2a9d0b3
Revises:
Create Date: 2026-02-18 10:12:44.301927

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c41e2a9d0b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'credit_balances',
        sa.Column('caregiver_id', sa.String(length=36), nullable=False),
        sa.Column('balance_minutes', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('caregiver_id'),
    )
    op.create_table(
        'credit_purchases',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('caregiver_id', sa.String(length=36), nullable=False),
        sa.Column('minutes_purchased', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('pack_label', sa.String(length=255), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=False),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_session_id'),
    )
    with op.batch_alter_table('credit_purchases', schema=None) as batch_op:
        batch_op.create_index('ix_credit_purchases_caregiver_id', ['caregiver_id'], unique=False)


def downgrade():
    with op.batch_alter_table('credit_purchases', schema=None) as batch_op:
        batch_op.drop_index('ix_credit_purchases_caregiver_id')

    op.drop_table('credit_purchases')
    op.drop_table('credit_balances')
