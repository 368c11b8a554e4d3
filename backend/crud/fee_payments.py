"""Payment recording: one FeePayment row plus the matching ledger update, committed together."""
import logging
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from crud import fee_invoices as crud_fee_invoices
from crud.document_sequences import generate_receipt_number
from models.fee_invoices import InvoiceStatus
from models.fee_payments import FeePayment, PaymentMethod, PaymentStatus
from models.students import Student
from schemas.fee_payments import FeePaymentCreate
from utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def validate_amount(amount) -> Decimal:
    if amount is None or amount == "":
        raise ValidationError("Payment amount is required")
    try:
        amount = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid payment amount: {amount}")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    return amount


def create_payment_row(
    db: Session,
    tenant_id: str,
    student_id: int,
    amount: Decimal,
    payment_method: str,
    invoice_id: Optional[int] = None,
    transaction_id: Optional[str] = None,
    remarks: Optional[str] = None,
    collected_by: Optional[str] = None,
    gateway_response: Optional[dict] = None,
    receipt_prefix: str = "REC",
) -> FeePayment:
    """Adds a successful payment row to the session and flushes it. Does not commit."""
    db_payment = FeePayment(
        invoice_id=invoice_id,
        student_id=student_id,
        receipt_number=generate_receipt_number(db, tenant_id, prefix=receipt_prefix),
        amount=amount,
        payment_method=PaymentMethod(payment_method).value,
        transaction_id=transaction_id,
        status=PaymentStatus.SUCCESS.value,
        remarks=remarks,
        collected_by=collected_by,
        gateway_response=gateway_response,
        created_by=collected_by,
        tenant_id=tenant_id
    )
    db.add(db_payment)
    db.flush()
    return db_payment


def record_payment(db: Session, tenant_id: str, payment: FeePaymentCreate, collected_by: str) -> FeePayment:
    """
    Records a manual payment.

    With an ``invoice_id`` the payment is allocated to that invoice and the
    ledger is updated in the same transaction. With only a ``student_id`` the
    payment is stored unallocated (student credit) and no invoice is touched.
    Nothing is written when validation fails.
    """
    amount = validate_amount(payment.amount)
    if payment.invoice_id is None and payment.student_id is None:
        raise ValidationError("Either invoice_id or student_id is required")

    if payment.invoice_id is not None:
        invoice = crud_fee_invoices.get_invoice(db, tenant_id, payment.invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {payment.invoice_id} not found")
        if invoice.status == InvoiceStatus.PAID.value:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already paid")
        if payment.student_id is not None and payment.student_id != invoice.student_id:
            raise ValidationError(f"Invoice {invoice.invoice_number} does not belong to student {payment.student_id}")
        student_id = invoice.student_id
    else:
        student = db.query(Student).filter(Student.id == payment.student_id, Student.tenant_id == tenant_id).first()
        if student is None:
            raise NotFoundError(f"Student {payment.student_id} not found")
        student_id = student.id

    try:
        db_payment = create_payment_row(
            db, tenant_id,
            student_id=student_id,
            amount=amount,
            payment_method=payment.payment_method,
            invoice_id=payment.invoice_id,
            transaction_id=payment.transaction_id,
            remarks=payment.remarks,
            collected_by=collected_by
        )
        if payment.invoice_id is not None:
            crud_fee_invoices.apply_payment(db, tenant_id, payment.invoice_id, amount, changed_by=collected_by)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_payment)

    if payment.invoice_id is None:
        logger.info(f"Unallocated payment {db_payment.receipt_number} of {amount} recorded for student {student_id} by {collected_by} for tenant {tenant_id}")
    else:
        logger.info(f"Payment {db_payment.receipt_number} of {amount} recorded for invoice {payment.invoice_id} by {collected_by} for tenant {tenant_id}")
    return db_payment


def get_payment(db: Session, tenant_id: str, payment_id: int) -> Optional[FeePayment]:
    return db.query(FeePayment).filter(FeePayment.id == payment_id, FeePayment.tenant_id == tenant_id).first()


def get_payments(
    db: Session,
    tenant_id: str,
    invoice_id: Optional[int] = None,
    student_id: Optional[int] = None,
    payment_method: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100
):
    query = db.query(FeePayment).filter(FeePayment.tenant_id == tenant_id)
    if invoice_id:
        query = query.filter(FeePayment.invoice_id == invoice_id)
    if student_id:
        query = query.filter(FeePayment.student_id == student_id)
    if payment_method:
        query = query.filter(FeePayment.payment_method == payment_method)
    if start_date:
        query = query.filter(FeePayment.payment_date >= datetime.combine(start_date, time.min))
    if end_date:
        query = query.filter(FeePayment.payment_date <= datetime.combine(end_date, time.max))
    return query.order_by(FeePayment.payment_date.desc(), FeePayment.id.desc()).offset(skip).limit(limit).all()
