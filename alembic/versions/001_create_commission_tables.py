"""Create commission rule, commission and payout tables

Revision ID: commission_engine_001
Revises:
Create Date: 2026-10-19

Tables created:
- commission_rules: Priority-ranked rules (global, category, vendor, product)
- vendor_payouts: Transfers of approved commissions to vendors
- vendor_commissions: One commission per order line item
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'commission_engine_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Check if tables already exist (for idempotent migrations)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    # 1. Commission Rules Table
    if 'commission_rules' not in existing_tables:
        op.create_table(
            'commission_rules',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('rule_type', sa.String(20), nullable=False, server_default='global'),
            sa.Column('calculation_method', sa.String(20), nullable=False, server_default='percentage'),
            sa.Column('value', sa.Numeric(10, 4), nullable=False, server_default='0'),
            sa.Column('target_id', sa.Integer(), nullable=True),
            sa.Column('priority', sa.Integer(), nullable=False, server_default='10'),
            sa.Column('status', sa.String(20), nullable=False, server_default='active'),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_by', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_commission_rules_type_status', 'commission_rules', ['rule_type', 'status'])
        op.create_index('ix_commission_rules_target_id', 'commission_rules', ['target_id'])
        print("Created table: commission_rules")

    # 2. Vendor Payouts Table
    if 'vendor_payouts' not in existing_tables:
        op.create_table(
            'vendor_payouts',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('vendor_id', sa.Integer(), nullable=False),
            sa.Column('amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('fee_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('net_amount', sa.Numeric(10, 2), nullable=False),
            sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
            sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
            sa.Column('transfer_reference', sa.String(255), nullable=True),
            sa.Column('transfer_metadata', sa.JSON(), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index('ix_vendor_payouts_vendor_id', 'vendor_payouts', ['vendor_id'])
        op.create_index('ix_vendor_payouts_status', 'vendor_payouts', ['status'])
        op.create_index('ix_vendor_payouts_transfer_reference', 'vendor_payouts', ['transfer_reference'])
        print("Created table: vendor_payouts")

    # 3. Vendor Commissions Table
    if 'vendor_commissions' not in existing_tables:
        op.create_table(
            'vendor_commissions',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('order_item_id', sa.Integer(), nullable=False),
            sa.Column('product_id', sa.Integer(), nullable=False),
            sa.Column('vendor_id', sa.Integer(), nullable=False),
            sa.Column('rule_id', sa.Integer(),
                      sa.ForeignKey('commission_rules.id', ondelete='SET NULL'), nullable=True),
            sa.Column('order_total', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('commission_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
            sa.Column('commission_rate', sa.Numeric(10, 4), nullable=True),
            sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
            sa.Column('payout_id', sa.Integer(),
                      sa.ForeignKey('vendor_payouts.id', ondelete='SET NULL'), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.UniqueConstraint('order_id', 'order_item_id', name='uq_commission_order_item'),
        )
        op.create_index('ix_vendor_commissions_order_id', 'vendor_commissions', ['order_id'])
        op.create_index('ix_vendor_commissions_product_id', 'vendor_commissions', ['product_id'])
        op.create_index('ix_vendor_commissions_payout_id', 'vendor_commissions', ['payout_id'])
        op.create_index('ix_vendor_commissions_vendor_status', 'vendor_commissions', ['vendor_id', 'status'])
        print("Created table: vendor_commissions")


def downgrade():
    # Drop tables in reverse order of dependencies
    op.drop_table('vendor_commissions')
    op.drop_table('vendor_payouts')
    op.drop_table('commission_rules')
