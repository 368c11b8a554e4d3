"""
M-Pesa transaction tracking: STK push initiation, status queries and lookups.

A transaction row moves pending -> success or pending -> failed, and only the
callback path (`crud.mpesa_callbacks`) performs that move.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from crud import fee_invoices as crud_fee_invoices
from crud.fee_payments import validate_amount
from models.fee_invoices import FeeInvoice, InvoiceStatus
from models.mpesa_transactions import MpesaTransaction, MpesaTransactionStatus
from models.students import Student
from utils.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from utils.mpesa_client import MpesaClient, format_phone_number

logger = logging.getLogger(__name__)

CHECK_PHONE_MESSAGE = "Please check your phone and enter your M-Pesa PIN to complete the payment"


def initiate_stk_push(
    db: Session,
    tenant_id: str,
    invoice_id: int,
    phone_number: str,
    amount,
    initiated_by: str,
    client: MpesaClient,
) -> dict:
    """
    Starts an STK push for part or all of an invoice's balance.

    The pending transaction row is committed before the gateway is called so
    the payment intent survives a gateway failure; in that case the row stays
    pending with the failure noted in ``result_desc`` and the `GatewayError`
    propagates to the caller.
    """
    amount = validate_amount(amount)
    if amount != amount.to_integral_value():
        # Daraja only takes whole shillings
        raise ValidationError(f"M-Pesa amounts must be whole shillings, got {amount}")
    formatted_phone = format_phone_number(phone_number)

    invoice = crud_fee_invoices.get_invoice(db, tenant_id, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.status == InvoiceStatus.PAID.value or invoice.balance_amount <= 0:
        raise ConflictError("Invoice is already fully paid")
    if amount > invoice.balance_amount:
        raise ConflictError(f"Amount exceeds balance. Maximum payable: KES {invoice.balance_amount}")

    student = invoice.student
    db_transaction = MpesaTransaction(
        invoice_id=invoice.id,
        student_id=invoice.student_id,
        phone_number=formatted_phone,
        amount=amount,
        status=MpesaTransactionStatus.PENDING.value,
        initiated_by=initiated_by,
        created_by=initiated_by,
        tenant_id=tenant_id
    )
    db.add(db_transaction)
    db.commit()
    db.refresh(db_transaction)

    logger.info(f"STK push transaction {db_transaction.id} created for invoice {invoice.invoice_number}, phone {formatted_phone}, amount {amount}, tenant {tenant_id}")

    try:
        response = client.stk_push(
            formatted_phone,
            amount,
            account_reference=invoice.invoice_number,
            description=f"School Fees - {student.first_name} {student.last_name}"
        )
    except GatewayError as e:
        logger.error(f"STK push for transaction {db_transaction.id} failed, left pending: {e}")
        db_transaction.result_desc = f"Initiation failed: {e}"[:1000]
        db.commit()
        raise

    db_transaction.merchant_request_id = response.get("MerchantRequestID")
    db_transaction.checkout_request_id = response.get("CheckoutRequestID")
    db_transaction.result_desc = response.get("ResponseDescription")
    db.commit()
    db.refresh(db_transaction)

    logger.info(f"STK push initiated for transaction {db_transaction.id}: checkout {db_transaction.checkout_request_id}")
    return {
        "success": True,
        "transaction_id": db_transaction.id,
        "merchant_request_id": db_transaction.merchant_request_id,
        "checkout_request_id": db_transaction.checkout_request_id,
        "response_description": db_transaction.result_desc,
        "message": CHECK_PHONE_MESSAGE
    }


def get_by_checkout_request_id(db: Session, checkout_request_id: str, tenant_id: Optional[str] = None) -> Optional[MpesaTransaction]:
    query = db.query(MpesaTransaction).filter(MpesaTransaction.checkout_request_id == checkout_request_id)
    if tenant_id is not None:
        query = query.filter(MpesaTransaction.tenant_id == tenant_id)
    return query.first()


def complete_transaction(db: Session, transaction_id: int, new_status: MpesaTransactionStatus, **fields) -> bool:
    """
    Moves a pending transaction to a terminal status.

    Returns False when the row is no longer pending, which makes a repeated
    callback a no-op. Does not commit.
    """
    if new_status == MpesaTransactionStatus.PENDING:
        raise ValueError("A transaction can only be completed as success or failed")
    result = db.execute(
        update(MpesaTransaction)
        .where(
            MpesaTransaction.id == transaction_id,
            MpesaTransaction.status == MpesaTransactionStatus.PENDING.value
        )
        .values(status=new_status.value, **fields)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def query_transaction_status(db: Session, tenant_id: str, checkout_request_id: str, client: MpesaClient) -> dict:
    """Live status from the gateway. Local state is left untouched."""
    if get_by_checkout_request_id(db, checkout_request_id, tenant_id) is None:
        raise NotFoundError("Transaction not found")
    return client.query_stk_status(checkout_request_id)


def _transaction_with_display_fields(db: Session, tenant_id: str):
    return db.query(
        MpesaTransaction,
        FeeInvoice.invoice_number,
        Student.first_name,
        Student.last_name
    ).join(FeeInvoice, FeeInvoice.id == MpesaTransaction.invoice_id).join(
        Student, Student.id == MpesaTransaction.student_id
    ).filter(MpesaTransaction.tenant_id == tenant_id)


def _to_detail(row) -> dict:
    transaction, invoice_number, first_name, last_name = row
    detail = {c.key: getattr(transaction, c.key) for c in MpesaTransaction.__table__.columns}
    detail.update(invoice_number=invoice_number, first_name=first_name, last_name=last_name)
    return detail


def get_transaction(db: Session, tenant_id: str, transaction_id: int) -> dict:
    row = _transaction_with_display_fields(db, tenant_id).filter(MpesaTransaction.id == transaction_id).first()
    if row is None:
        raise NotFoundError("Transaction not found")
    return _to_detail(row)


def get_student_transactions(db: Session, tenant_id: str, student_id: int):
    rows = _transaction_with_display_fields(db, tenant_id).filter(
        MpesaTransaction.student_id == student_id
    ).order_by(MpesaTransaction.created_at.desc(), MpesaTransaction.id.desc()).all()
    return [_to_detail(row) for row in rows]
