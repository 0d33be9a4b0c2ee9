"""create recurring donation and settlement tables

Revision ID: a1c2e3f4b501
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c2e3f4b501'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # 参照用テーブル (ID管理・キャンペーンは外部サービスが正)
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'donors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_donors_user_id', 'donors', ['user_id'], unique=True)

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(100), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_campaigns_code', 'campaigns', ['code'], unique=True)

    op.create_table(
        'service_settings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_name', sa.String(255), nullable=True),
        sa.Column('donor_portal_url', sa.String(500), nullable=True),
        sa.Column('from_email', sa.String(255), nullable=True),
        sa.Column('reply_to_email', sa.String(255), nullable=True),
        sa.Column('statement_descriptor', sa.String(22), nullable=True),
        sa.Column('stripe_secret_key_enc', sa.Text(), nullable=True),
        sa.Column('resend_api_key_enc', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # recurring_donations
    op.create_table(
        'recurring_donations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('donor_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('frequency', sa.Enum('monthly', 'annually', name='recurring_frequency'), nullable=False),
        sa.Column(
            'status',
            sa.Enum('active', 'paused', 'cancelled', 'failed', 'expired', name='recurring_donation_status'),
            nullable=False,
        ),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('next_due_date', sa.DateTime(), nullable=False),
        sa.Column('last_processed_date', sa.DateTime(), nullable=True),
        sa.Column('successful_charge_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retry_not_before', sa.DateTime(), nullable=True),
        sa.Column('last_error_message', sa.String(2000), nullable=True),
        sa.Column('payment_token_enc', sa.Text(), nullable=False),
        sa.Column('pay_transaction_fee', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('transaction_fee_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('donation_message', sa.String(1000), nullable=True),
        sa.Column('referral_code', sa.String(100), nullable=True),
        sa.Column('campaign_code', sa.String(100), nullable=True),
        sa.Column('campaign_id', sa.Integer(), nullable=True),
        sa.Column('claimed_by', sa.String(255), nullable=True),
        sa.Column('claimed_until', sa.DateTime(), nullable=True),
        sa.Column('cancelled_date', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(255), nullable=True),
        sa.Column('cancellation_reason', sa.String(1000), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('modified_by', sa.String(255), nullable=True),
        sa.Column('modified_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['donor_id'], ['donors.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_recurring_donations_donor_id', 'recurring_donations', ['donor_id'])
    op.create_index('ix_recurring_donations_status', 'recurring_donations', ['status'])
    op.create_index('ix_recurring_donations_next_due_date', 'recurring_donations', ['next_due_date'])
    op.create_index('ix_recurring_donations_referral_code', 'recurring_donations', ['referral_code'])
    op.create_index('ix_recurring_donations_campaign_id', 'recurring_donations', ['campaign_id'])
    # 課金対象検索用
    op.create_index(
        'ix_recurring_donations_status_next_due_date', 'recurring_donations', ['status', 'next_due_date'],
    )

    # payment_transactions (決済台帳)
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('recurring_donation_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(255), nullable=False),
        sa.Column('gateway_transaction_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.Enum('succeeded', 'failed', name='payment_transaction_status'), nullable=False),
        sa.Column('error_message', sa.String(2000), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recurring_donation_id'], ['recurring_donations.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('gateway_transaction_id'),
    )
    op.create_index(
        'ix_payment_transactions_recurring_donation_id', 'payment_transactions', ['recurring_donation_id'],
    )
    op.create_index('ix_payment_transactions_reference', 'payment_transactions', ['reference'])

    # settlement_records (追加のみ)
    op.create_table(
        'settlement_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('recurring_donation_id', sa.Integer(), nullable=False),
        sa.Column('donor_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('pay_transaction_fee', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('transaction_fee_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('charged_amount', sa.Numeric(18, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('frequency', sa.String(20), nullable=False),
        sa.Column('donation_message', sa.String(1000), nullable=True),
        sa.Column('referral_code', sa.String(100), nullable=True),
        sa.Column('campaign_code', sa.String(100), nullable=True),
        sa.Column('campaign_id', sa.Integer(), nullable=True),
        sa.Column('gateway_transaction_id', sa.String(255), nullable=False),
        sa.Column('payment_transaction_id', sa.Integer(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recurring_donation_id'], ['recurring_donations.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['donor_id'], ['donors.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['payment_transaction_id'], ['payment_transactions.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('gateway_transaction_id'),
        sa.UniqueConstraint('recurring_donation_id', 'due_date', name='uq_settlement_donation_due_date'),
    )
    op.create_index(
        'ix_settlement_records_recurring_donation_id', 'settlement_records', ['recurring_donation_id'],
    )
    op.create_index('ix_settlement_records_donor_id', 'settlement_records', ['donor_id'])
    op.create_index('ix_settlement_records_referral_code', 'settlement_records', ['referral_code'])
    op.create_index('ix_settlement_records_campaign_id', 'settlement_records', ['campaign_id'])

    # system_logs
    op.create_table(
        'system_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('level', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('recurring_donation_id', sa.Integer(), nullable=True),
        sa.Column('donor_id', sa.Integer(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['recurring_donation_id'], ['recurring_donations.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['donor_id'], ['donors.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_system_logs_level', 'system_logs', ['level'])
    op.create_index('ix_system_logs_event_type', 'system_logs', ['event_type'])
    op.create_index('ix_system_logs_recurring_donation_id', 'system_logs', ['recurring_donation_id'])
    op.create_index('ix_system_logs_donor_id', 'system_logs', ['donor_id'])
    op.create_index('ix_system_logs_created_at', 'system_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('system_logs')
    op.drop_table('settlement_records')
    op.drop_table('payment_transactions')
    op.drop_table('recurring_donations')
    op.drop_table('service_settings')
    op.drop_table('campaigns')
    op.drop_table('donors')
    op.drop_table('users')
