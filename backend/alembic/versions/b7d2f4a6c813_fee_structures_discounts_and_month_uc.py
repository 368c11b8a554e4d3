"""fee_structures_discounts_and_month_uc

Revision ID: b7d2f4a6c813
Revises: a1c3e5f7b901
Create Date: 2026-10-26 11:05:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d2f4a6c813'
down_revision: Union[str, None] = 'a1c3e5f7b901'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'fee_structures',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('class_name', sa.String(length=50), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('frequency', sa.String(length=20), nullable=False, server_default='term'),
        sa.Column('due_day', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('academic_year', sa.String(length=20), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_fee_structures_tenant_id', 'fee_structures', ['tenant_id'])
    op.create_index('ix_fee_structures_class_name', 'fee_structures', ['class_name'])

    op.create_table(
        'fee_discounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('discount_type', sa.String(length=20), nullable=False),
        sa.Column('value', sa.Numeric(12, 2), nullable=False),
        sa.Column('applicable_to', sa.String(length=50), nullable=False, server_default='all'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_fee_discounts_tenant_id', 'fee_discounts', ['tenant_id'])

    op.create_table(
        'student_fee_discounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('discount_id', sa.Integer(), sa.ForeignKey('fee_discounts.id'), nullable=False),
        sa.Column('applied_by', sa.String(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('valid_from', sa.Date(), nullable=True),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_student_fee_discounts_tenant_id', 'student_fee_discounts', ['tenant_id'])
    op.create_index('ix_student_fee_discounts_student_id', 'student_fee_discounts', ['student_id'])
    op.create_index('ix_student_fee_discounts_discount_id', 'student_fee_discounts', ['discount_id'])

    op.create_unique_constraint('_tenant_student_month_uc', 'fee_invoices', ['tenant_id', 'student_id', 'month'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_constraint('_tenant_student_month_uc', 'fee_invoices', type_='unique')
    op.drop_table('student_fee_discounts')
    op.drop_table('fee_discounts')
    op.drop_table('fee_structures')
