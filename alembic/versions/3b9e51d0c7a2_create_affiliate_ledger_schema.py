"""Create affiliate ledger schema

Revision ID: 3b9e51d0c7a2
Revises:
Create Date: 2026-10-17 09:12:41.208113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b9e51d0c7a2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

affiliatestatus = postgresql.ENUM('pending', 'active', 'suspended', 'rejected', name='affiliatestatus', create_type=False)
paymentmethod = postgresql.ENUM('bank', 'mobile_banking', name='paymentmethod', create_type=False)
coupontype = postgresql.ENUM('percentage', 'fixed', name='coupontype', create_type=False)
couponapprovalstatus = postgresql.ENUM('pending', 'approved', 'rejected', name='couponapprovalstatus', create_type=False)
commissionkind = postgresql.ENUM('commission', 'reversal', name='commissionkind', create_type=False)
commissionstatus = postgresql.ENUM('pending', 'approved', 'paid', 'cancelled', name='commissionstatus', create_type=False)
withdrawstatus = postgresql.ENUM('pending', 'approved', 'paid', 'rejected', name='withdrawstatus', create_type=False)

ENUMS = (affiliatestatus, paymentmethod, coupontype, couponapprovalstatus, commissionkind, commissionstatus, withdrawstatus)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table('affiliates',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('status', affiliatestatus, nullable=False),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('referral_code', sa.String(length=32), nullable=False),
    sa.Column('payment_method', paymentmethod, nullable=False),
    sa.Column('payment_details', sa.JSON(), nullable=False),
    sa.Column('total_referrals', sa.Integer(), nullable=False),
    sa.Column('total_sales', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('total_commission', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('pending_commission', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('paid_commission', sa.Numeric(precision=14, scale=2), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('referral_code')
    )
    op.create_index(op.f('ix_affiliates_user_id'), 'affiliates', ['user_id'], unique=False)
    op.create_index(
        'uq_affiliates_live_user', 'affiliates', ['user_id'], unique=True,
        postgresql_where=sa.text("status <> 'rejected'"),
    )

    op.create_table('coupons',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('code', sa.String(length=64), nullable=False),
    sa.Column('affiliate_id', sa.UUID(), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('type', coupontype, nullable=False),
    sa.Column('value', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('max_discount', sa.Numeric(precision=12, scale=2), nullable=True),
    sa.Column('min_purchase', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('usage_limit', sa.Integer(), nullable=True),
    sa.Column('expiry_date', sa.DateTime(), nullable=True),
    sa.Column('one_time_use', sa.Boolean(), nullable=False),
    sa.Column('approval_status', couponapprovalstatus, nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('used_count', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('reviewed_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )
    op.create_index(op.f('ix_coupons_affiliate_id'), 'coupons', ['affiliate_id'], unique=False)

    op.create_table('coupon_redemptions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('coupon_id', sa.UUID(), nullable=False),
    sa.Column('order_id', sa.String(length=64), nullable=True),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('one_time_key', sa.UUID(), nullable=True),
    sa.Column('order_amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('discount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_redemptions_order'),
    sa.UniqueConstraint('coupon_id', 'one_time_key', name='uq_coupon_redemptions_one_time')
    )
    op.create_index(op.f('ix_coupon_redemptions_coupon_id'), 'coupon_redemptions', ['coupon_id'], unique=False)

    op.create_table('commission_entries',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('affiliate_id', sa.UUID(), nullable=False),
    sa.Column('order_id', sa.String(length=64), nullable=False),
    sa.Column('referred_user_id', sa.UUID(), nullable=False),
    sa.Column('order_amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=False),
    sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('kind', commissionkind, nullable=False),
    sa.Column('status', commissionstatus, nullable=False),
    sa.Column('reversal_of_id', sa.UUID(), nullable=True),
    sa.Column('reason', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('reviewed_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ),
    sa.ForeignKeyConstraint(['reversal_of_id'], ['commission_entries.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_id', 'kind', name='uq_commission_entries_order_kind')
    )
    op.create_index(op.f('ix_commission_entries_affiliate_id'), 'commission_entries', ['affiliate_id'], unique=False)

    op.create_table('withdraw_requests',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('affiliate_id', sa.UUID(), nullable=False),
    sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('status', withdrawstatus, nullable=False),
    sa.Column('payment_method', paymentmethod, nullable=False),
    sa.Column('payment_details', sa.JSON(), nullable=False),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('paid_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_withdraw_requests_affiliate_id'), 'withdraw_requests', ['affiliate_id'], unique=False)

    op.create_table('commission_settlements',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('withdraw_request_id', sa.UUID(), nullable=False),
    sa.Column('commission_entry_id', sa.UUID(), nullable=False),
    sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['commission_entry_id'], ['commission_entries.id'], ),
    sa.ForeignKeyConstraint(['withdraw_request_id'], ['withdraw_requests.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_commission_settlements_commission_entry_id'), 'commission_settlements', ['commission_entry_id'], unique=False)
    op.create_index(op.f('ix_commission_settlements_withdraw_request_id'), 'commission_settlements', ['withdraw_request_id'], unique=False)

    op.create_table('audit_log',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('actor_id', sa.UUID(), nullable=True),
    sa.Column('action', sa.String(), nullable=False),
    sa.Column('entity', sa.String(), nullable=False),
    sa.Column('entity_id', sa.UUID(), nullable=True),
    sa.Column('payload_json', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('audit_log')
    op.drop_index(op.f('ix_commission_settlements_withdraw_request_id'), table_name='commission_settlements')
    op.drop_index(op.f('ix_commission_settlements_commission_entry_id'), table_name='commission_settlements')
    op.drop_table('commission_settlements')
    op.drop_index(op.f('ix_withdraw_requests_affiliate_id'), table_name='withdraw_requests')
    op.drop_table('withdraw_requests')
    op.drop_index(op.f('ix_commission_entries_affiliate_id'), table_name='commission_entries')
    op.drop_table('commission_entries')
    op.drop_index(op.f('ix_coupon_redemptions_coupon_id'), table_name='coupon_redemptions')
    op.drop_table('coupon_redemptions')
    op.drop_index(op.f('ix_coupons_affiliate_id'), table_name='coupons')
    op.drop_table('coupons')
    op.drop_index('uq_affiliates_live_user', table_name='affiliates')
    op.drop_index(op.f('ix_affiliates_user_id'), table_name='affiliates')
    op.drop_table('affiliates')

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
