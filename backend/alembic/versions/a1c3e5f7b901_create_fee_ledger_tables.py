"""create_fee_ledger_tables

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b901'
down_revision: Union[str, None] = None
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
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('table_name', sa.String(), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('changed_by', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
    )
    op.create_index('ix_audit_log_tenant_id', 'audit_log', ['tenant_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('scope', sa.String(length=30), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('tenant_id', 'scope', name='_tenant_sequence_scope_uc'),
    )
    op.create_index('ix_document_sequences_tenant_id', 'document_sequences', ['tenant_id'])

    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('admission_number', sa.String(length=50), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('class_name', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('parent_phone', sa.String(length=20), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'admission_number', name='_tenant_admission_number_uc'),
    )
    op.create_index('ix_students_tenant_id', 'students', ['tenant_id'])
    op.create_index('ix_students_class_name', 'students', ['class_name'])

    op.create_table(
        'fee_invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_number', sa.String(length=30), nullable=False),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('month', sa.Date(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('balance_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.String(), nullable=True),
        sa.UniqueConstraint('tenant_id', 'invoice_number', name='_tenant_invoice_number_uc'),
        sa.CheckConstraint('balance_amount >= 0', name='ck_fee_invoices_balance_non_negative'),
    )
    op.create_index('ix_fee_invoices_tenant_id', 'fee_invoices', ['tenant_id'])
    op.create_index('ix_fee_invoices_student_id', 'fee_invoices', ['student_id'])
    op.create_index('ix_fee_invoices_status', 'fee_invoices', ['status'])
    op.create_index('ix_fee_invoices_invoice_number', 'fee_invoices', ['invoice_number'])

    op.create_table(
        'fee_payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('fee_invoices.id'), nullable=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('receipt_number', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='success'),
        sa.Column('payment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('collected_by', sa.String(), nullable=True),
        sa.Column('gateway_response', sa.JSON(), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'receipt_number', name='_tenant_receipt_number_uc'),
    )
    op.create_index('ix_fee_payments_tenant_id', 'fee_payments', ['tenant_id'])
    op.create_index('ix_fee_payments_invoice_id', 'fee_payments', ['invoice_id'])
    op.create_index('ix_fee_payments_student_id', 'fee_payments', ['student_id'])

    op.create_table(
        'mpesa_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_id', sa.Integer(), sa.ForeignKey('fee_invoices.id'), nullable=False),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('merchant_request_id', sa.String(length=100), nullable=True),
        sa.Column('checkout_request_id', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('result_code', sa.Integer(), nullable=True),
        sa.Column('result_desc', sa.Text(), nullable=True),
        sa.Column('mpesa_receipt_number', sa.String(length=50), nullable=True),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('callback_payload', sa.JSON(), nullable=True),
        sa.Column('initiated_by', sa.String(), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_mpesa_transactions_tenant_id', 'mpesa_transactions', ['tenant_id'])
    op.create_index('ix_mpesa_transactions_invoice_id', 'mpesa_transactions', ['invoice_id'])
    op.create_index('ix_mpesa_transactions_student_id', 'mpesa_transactions', ['student_id'])
    op.create_index('ix_mpesa_transactions_status', 'mpesa_transactions', ['status'])
    op.create_index('ix_mpesa_transactions_checkout_request_id', 'mpesa_transactions', ['checkout_request_id'], unique=True)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('mpesa_transactions')
    op.drop_table('fee_payments')
    op.drop_table('fee_invoices')
    op.drop_table('students')
    op.drop_table('document_sequences')
    op.drop_table('audit_log')
