"""
Invoice ledger: invoice generation, the paid/balance bookkeeping and the
queries built on top of it.

Ledger columns (paid_amount, balance_amount, status) are only ever written by
`apply_payment` and, for the overdue flag, `mark_overdue_invoices`.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crud.audit_log import create_audit_log
from crud.document_sequences import generate_invoice_number
from crud.fee_discounts import calculate_student_discount
from crud.fee_structures import get_class_fee_total
from models.fee_invoices import FeeInvoice, InvoiceStatus
from models.fee_payments import FeePayment
from models.students import Student
from schemas.audit_log import AuditLogCreate
from schemas.fee_invoices import BulkInvoiceCreate, FeeInvoiceCreate
from utils import sqlalchemy_to_dict
from utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

OPEN_STATUSES = (InvoiceStatus.PENDING.value, InvoiceStatus.PARTIAL.value, InvoiceStatus.OVERDUE.value)


def derive_invoice_status(net_amount, paid_amount) -> InvoiceStatus:
    balance = Decimal(net_amount) - Decimal(paid_amount)
    if balance <= 0:
        return InvoiceStatus.PAID
    if Decimal(paid_amount) > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


def get_invoice(db: Session, tenant_id: str, invoice_id: int) -> Optional[FeeInvoice]:
    return db.query(FeeInvoice).filter(
        FeeInvoice.id == invoice_id,
        FeeInvoice.tenant_id == tenant_id
    ).first()


def get_invoices(
    db: Session,
    tenant_id: str,
    student_id: Optional[int] = None,
    status: Optional[str] = None,
    start_month: Optional[date] = None,
    end_month: Optional[date] = None,
    skip: int = 0,
    limit: int = 100
):
    query = db.query(FeeInvoice).filter(FeeInvoice.tenant_id == tenant_id)
    if student_id:
        query = query.filter(FeeInvoice.student_id == student_id)
    if status:
        query = query.filter(FeeInvoice.status == status)
    if start_month:
        query = query.filter(FeeInvoice.month >= start_month)
    if end_month:
        query = query.filter(FeeInvoice.month <= end_month)
    return query.order_by(FeeInvoice.created_at.desc(), FeeInvoice.id.desc()).offset(skip).limit(limit).all()


def apply_payment(db: Session, tenant_id: str, invoice_id: int, amount: Decimal, changed_by: str = "system") -> FeeInvoice:
    """
    Adds ``amount`` to an invoice's paid total.

    The whole read-modify-write happens inside one UPDATE statement on the
    database server, guarded by ``balance_amount >= amount``, so concurrent
    payments against the same invoice are serialized by the row lock and can
    never push the balance below zero. The caller owns the transaction; this
    function only flushes.

    Raises:
        ValidationError: amount is not positive.
        NotFoundError: no such invoice for this tenant.
        ConflictError: the invoice is settled or the amount exceeds the balance.
    """
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")

    new_paid = FeeInvoice.paid_amount + amount
    result = db.execute(
        update(FeeInvoice)
        .where(
            FeeInvoice.id == invoice_id,
            FeeInvoice.tenant_id == tenant_id,
            FeeInvoice.deleted_at.is_(None),
            FeeInvoice.balance_amount >= amount
        )
        .values(
            paid_amount=new_paid,
            balance_amount=FeeInvoice.net_amount - new_paid,
            status=case(
                (FeeInvoice.net_amount - new_paid <= 0, InvoiceStatus.PAID.value),
                else_=InvoiceStatus.PARTIAL.value
            ),
            updated_by=changed_by
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        invoice = get_invoice(db, tenant_id, invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.status == InvoiceStatus.PAID.value or invoice.balance_amount <= 0:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already fully paid")
        raise ConflictError(
            f"Amount exceeds balance. Maximum payable for invoice {invoice.invoice_number}: {invoice.balance_amount}"
        )

    invoice = db.query(FeeInvoice).filter(
        FeeInvoice.id == invoice_id, FeeInvoice.tenant_id == tenant_id
    ).populate_existing().one()

    create_audit_log(db, AuditLogCreate(
        table_name='fee_invoices',
        record_id=invoice.id,
        changed_by=changed_by,
        action='PAYMENT',
        old_values={"amount": str(amount)},
        new_values={
            "paid_amount": str(invoice.paid_amount),
            "balance_amount": str(invoice.balance_amount),
            "status": invoice.status
        },
        tenant_id=tenant_id
    ), commit=False)

    logger.info(f"Applied {amount} to invoice {invoice.invoice_number} (balance {invoice.balance_amount}, status {invoice.status}) for tenant {tenant_id}")
    return invoice


def _build_invoice(db: Session, tenant_id: str, student: Student, total_amount: Decimal, discount_amount: Decimal,
                   month: Optional[date], due_date: Optional[date], description: Optional[str], created_by: str) -> FeeInvoice:
    net_amount = Decimal(total_amount) - Decimal(discount_amount)
    return FeeInvoice(
        invoice_number=generate_invoice_number(db, tenant_id),
        student_id=student.id,
        month=month,
        description=description,
        total_amount=total_amount,
        discount_amount=discount_amount,
        net_amount=net_amount,
        paid_amount=Decimal("0"),
        balance_amount=net_amount,
        due_date=due_date,
        status=derive_invoice_status(net_amount, 0).value,
        created_by=created_by,
        tenant_id=tenant_id
    )


def _class_fee_total(db: Session, tenant_id: str, student: Student) -> Decimal:
    total = get_class_fee_total(db, tenant_id, student.class_name)
    if total <= 0:
        raise ValidationError(f"No active fee structure found for class {student.class_name or '(none)'}")
    return total


def generate_invoice(db: Session, tenant_id: str, invoice: FeeInvoiceCreate, created_by: str) -> FeeInvoice:
    """
    Creates one invoice for a student. One invoice per student per billing month.

    Without an explicit ``total_amount`` the invoice is billed at the sum of
    the active fee structures for the student's class, and without an explicit
    ``discount_amount`` the student's assigned discounts are applied.
    """
    if invoice.total_amount is not None and invoice.total_amount <= 0:
        raise ValidationError("Invoice total must be greater than 0")
    if (invoice.total_amount is not None and invoice.discount_amount is not None
            and invoice.discount_amount > invoice.total_amount):
        raise ValidationError("Discount cannot exceed the invoice total")

    student = db.query(Student).filter(Student.id == invoice.student_id, Student.tenant_id == tenant_id).first()
    if student is None:
        raise NotFoundError(f"Student {invoice.student_id} not found")

    month = invoice.month or date.today().replace(day=1)
    total_amount = invoice.total_amount
    if total_amount is None:
        total_amount = _class_fee_total(db, tenant_id, student)
    discount_amount = invoice.discount_amount
    if discount_amount is None:
        discount_amount = calculate_student_discount(db, tenant_id, student.id, total_amount, month)
    elif discount_amount > total_amount:
        raise ValidationError("Discount cannot exceed the invoice total")
    existing = db.query(FeeInvoice).filter(
        FeeInvoice.tenant_id == tenant_id,
        FeeInvoice.student_id == student.id,
        FeeInvoice.month == month
    ).first()
    if existing:
        raise ConflictError("Invoice already exists for this month")

    due_date = invoice.due_date or month.replace(day=10)
    try:
        db_invoice = _build_invoice(db, tenant_id, student, total_amount, discount_amount,
                                    month, due_date, invoice.description, created_by)
        db.add(db_invoice)
        try:
            db.flush()
        except IntegrityError as e:
            # Soft-deleted invoices are invisible to the check above but still hold the month
            logger.warning(f"Duplicate invoice month {month} for student {student.id} in tenant {tenant_id}: {e.orig}")
            raise ConflictError("Invoice already exists for this month") from e
        create_audit_log(db, AuditLogCreate(
            table_name='fee_invoices',
            record_id=db_invoice.id,
            changed_by=created_by,
            action='CREATE',
            old_values={},
            new_values=sqlalchemy_to_dict(db_invoice),
            tenant_id=tenant_id
        ), commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_invoice)

    logger.info(f"Invoice {db_invoice.invoice_number} generated for student {student.id} by {created_by} for tenant {tenant_id}")
    return db_invoice


def generate_bulk_invoices(db: Session, tenant_id: str, data: BulkInvoiceCreate, created_by: str) -> dict:
    """
    Invoices every active student (optionally one class) for the same amount,
    or for their class's fee structure total when no amount is given. Each
    student's assigned discounts are deducted.

    A failure for one student is reported in ``errors`` and does not stop the
    rest of the batch.
    """
    query = db.query(Student).filter(Student.tenant_id == tenant_id, Student.status == "active")
    if data.class_name:
        query = query.filter(Student.class_name == data.class_name)
    students = query.order_by(Student.id.asc()).all()

    if not students:
        raise NotFoundError("No active students found")

    description = data.description or f"{data.fee_type.capitalize()} Fee - {data.academic_year or data.due_date.year}"
    invoices_created = []
    errors = []

    for student in students:
        try:
            total_amount = data.amount if data.amount is not None else _class_fee_total(db, tenant_id, student)
            discount_amount = calculate_student_discount(db, tenant_id, student.id, total_amount, data.due_date)
            db_invoice = _build_invoice(db, tenant_id, student, total_amount, discount_amount,
                                        data.due_date, data.due_date, description, created_by)
            db.add(db_invoice)
            db.commit()
            db.refresh(db_invoice)
            invoices_created.append({
                "id": db_invoice.id,
                "invoice_number": db_invoice.invoice_number,
                "student_name": student.full_name,
                "amount": db_invoice.net_amount
            })
        except Exception as e:
            db.rollback()
            logger.warning(f"Bulk invoice failed for student {student.id} in tenant {tenant_id}: {e}")
            errors.append({"student": student.full_name, "error": str(e)})

    logger.info(f"Bulk invoices generated for tenant {tenant_id}: {len(invoices_created)} created, {len(errors)} errors")
    return {
        "total_students": len(students),
        "invoices_created": len(invoices_created),
        "errors_count": len(errors),
        "invoices": invoices_created,
        "errors": errors
    }


def get_defaulters(db: Session, tenant_id: str, class_name: Optional[str] = None, threshold: Decimal = Decimal("0")):
    """Students whose outstanding balance across open invoices exceeds ``threshold``."""
    total_due = func.sum(FeeInvoice.balance_amount)
    query = db.query(
        Student.id.label("student_id"),
        Student.admission_number,
        Student.first_name,
        Student.last_name,
        Student.class_name,
        Student.parent_phone,
        total_due.label("total_due"),
        func.count(FeeInvoice.id).label("pending_invoices")
    ).join(FeeInvoice, and_(FeeInvoice.student_id == Student.id, FeeInvoice.tenant_id == tenant_id)).filter(
        Student.tenant_id == tenant_id,
        FeeInvoice.status.in_(OPEN_STATUSES),
        FeeInvoice.deleted_at.is_(None)
    )
    if class_name:
        query = query.filter(Student.class_name == class_name)

    rows = query.group_by(
        Student.id, Student.admission_number, Student.first_name, Student.last_name,
        Student.class_name, Student.parent_phone
    ).having(total_due > threshold).order_by(total_due.desc()).all()
    return [dict(row._mapping) for row in rows]


def get_fee_statistics(db: Session, tenant_id: str, class_name: Optional[str] = None,
                       start_month: Optional[date] = None, end_month: Optional[date] = None) -> dict:
    def count_status(*statuses):
        return func.coalesce(func.sum(case((FeeInvoice.status.in_(statuses), 1), else_=0)), 0)

    query = db.query(
        func.count(FeeInvoice.id).label("total_invoices"),
        func.coalesce(func.sum(FeeInvoice.net_amount), 0).label("total_amount"),
        func.coalesce(func.sum(FeeInvoice.paid_amount), 0).label("total_collected"),
        func.coalesce(func.sum(FeeInvoice.balance_amount), 0).label("total_pending"),
        count_status(InvoiceStatus.PAID.value).label("paid_invoices"),
        count_status(InvoiceStatus.PENDING.value, InvoiceStatus.PARTIAL.value).label("pending_invoices"),
        count_status(InvoiceStatus.OVERDUE.value).label("overdue_invoices")
    ).filter(FeeInvoice.tenant_id == tenant_id, FeeInvoice.deleted_at.is_(None))
    if class_name:
        query = query.join(Student, Student.id == FeeInvoice.student_id).filter(Student.class_name == class_name)
    if start_month:
        query = query.filter(FeeInvoice.month >= start_month)
    if end_month:
        query = query.filter(FeeInvoice.month <= end_month)

    row = query.one()
    total_amount = Decimal(str(row.total_amount))
    total_collected = Decimal(str(row.total_collected))
    collection_percentage = 0.0
    if total_amount > 0:
        collection_percentage = round(float(total_collected / total_amount * 100), 2)

    return {
        "total_invoices": row.total_invoices,
        "total_amount": total_amount,
        "total_collected": total_collected,
        "total_pending": Decimal(str(row.total_pending)),
        "paid_invoices": int(row.paid_invoices),
        "pending_invoices": int(row.pending_invoices),
        "overdue_invoices": int(row.overdue_invoices),
        "collection_percentage": collection_percentage
    }


def get_student_fee_account(db: Session, tenant_id: str, student_id: int) -> dict:
    student = db.query(Student).filter(Student.id == student_id, Student.tenant_id == tenant_id).first()
    if student is None:
        raise NotFoundError(f"Student {student_id} not found")

    invoices = db.query(FeeInvoice).filter(
        FeeInvoice.student_id == student_id, FeeInvoice.tenant_id == tenant_id
    ).order_by(FeeInvoice.id.asc()).all()
    payments = db.query(FeePayment).filter(
        FeePayment.student_id == student_id, FeePayment.tenant_id == tenant_id
    ).order_by(FeePayment.payment_date.asc(), FeePayment.id.asc()).all()

    return {
        "student_id": student_id,
        "total_invoiced": sum((i.net_amount for i in invoices), Decimal("0")),
        "total_paid": sum((i.paid_amount for i in invoices), Decimal("0")),
        "total_balance": sum((i.balance_amount for i in invoices), Decimal("0")),
        "unallocated_credit": sum((p.amount for p in payments if p.invoice_id is None), Decimal("0")),
        "invoices": invoices,
        "payments": payments
    }


def mark_overdue_invoices(db: Session, tenant_id: Optional[str] = None, today: Optional[date] = None) -> int:
    """Flags open invoices past their due date as overdue. Returns the number flagged."""
    today = today or date.today()
    stmt = update(FeeInvoice).where(
        FeeInvoice.status.in_((InvoiceStatus.PENDING.value, InvoiceStatus.PARTIAL.value)),
        FeeInvoice.due_date < today,
        FeeInvoice.balance_amount > 0,
        FeeInvoice.deleted_at.is_(None)
    )
    if tenant_id:
        stmt = stmt.where(FeeInvoice.tenant_id == tenant_id)
    result = db.execute(stmt.values(status=InvoiceStatus.OVERDUE.value).execution_options(synchronize_session=False))
    db.commit()
    return result.rowcount
