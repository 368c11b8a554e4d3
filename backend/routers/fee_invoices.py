from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from decimal import Decimal
import logging

from database import get_db
from crud import fee_invoices as crud_fee_invoices
from models.fee_invoices import InvoiceStatus
from schemas.fee_invoices import (
    FeeInvoice as FeeInvoiceSchema,
    FeeInvoiceCreate,
    BulkInvoiceCreate,
    BulkInvoiceResult,
    Defaulter,
    FeeStatistics,
    StudentFeeAccount,
)
from utils.auth_utils import get_current_user, get_user_identifier, require_group
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/fee-invoices", tags=["Fee Invoices"])
logger = logging.getLogger("fee_invoices")

FINANCE_GROUPS = ["admin", "finance"]

@router.post("/", response_model=FeeInvoiceSchema, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice: FeeInvoiceCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Generate an invoice for one student."""
    return crud_fee_invoices.generate_invoice(db, tenant_id, invoice, created_by=get_user_identifier(user))

@router.post("/bulk", response_model=BulkInvoiceResult, status_code=status.HTTP_201_CREATED)
def create_bulk_invoices(
    data: BulkInvoiceCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Generate the same invoice for every active student, optionally limited to one class."""
    return crud_fee_invoices.generate_bulk_invoices(db, tenant_id, data, created_by=get_user_identifier(user))

@router.get("/", response_model=List[FeeInvoiceSchema])
def list_invoices(
    student_id: Optional[int] = None,
    status: Optional[InvoiceStatus] = None,
    start_month: Optional[date] = None,
    end_month: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_invoices.get_invoices(
        db, tenant_id,
        student_id=student_id,
        status=status.value if status else None,
        start_month=start_month,
        end_month=end_month,
        skip=skip,
        limit=limit
    )

@router.get("/defaulters", response_model=List[Defaulter])
def list_defaulters(
    class_name: Optional[str] = None,
    threshold: Decimal = Decimal("0"),
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Students with an outstanding balance above ``threshold``, largest first."""
    return crud_fee_invoices.get_defaulters(db, tenant_id, class_name=class_name, threshold=threshold)

@router.get("/statistics", response_model=FeeStatistics)
def read_fee_statistics(
    class_name: Optional[str] = None,
    start_month: Optional[date] = None,
    end_month: Optional[date] = None,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Invoiced, collected and outstanding totals with the collection rate."""
    return crud_fee_invoices.get_fee_statistics(
        db, tenant_id, class_name=class_name, start_month=start_month, end_month=end_month
    )

@router.get("/student/{student_id}/account", response_model=StudentFeeAccount)
def read_student_fee_account(
    student_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_invoices.get_student_fee_account(db, tenant_id, student_id)

@router.get("/{invoice_id}", response_model=FeeInvoiceSchema)
def read_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    db_invoice = crud_fee_invoices.get_invoice(db, tenant_id, invoice_id)
    if db_invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return db_invoice
