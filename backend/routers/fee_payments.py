from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
import logging
import os

from database import get_db
from crud import fee_payments as crud_fee_payments
from models.fee_payments import PaymentMethod
from schemas.fee_payments import FeePayment, FeePaymentCreate
from utils.auth_utils import get_current_user, get_user_identifier, require_group
from utils.receipt_utils import generate_fee_receipt
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/fee-payments", tags=["Fee Payments"])
logger = logging.getLogger("fee_payments")

@router.post("/", response_model=FeePayment, status_code=status.HTTP_201_CREATED)
def create_fee_payment(
    payment: FeePaymentCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(["admin", "finance"])),
    tenant_id: str = Depends(get_tenant_id)
):
    """Record a payment against an invoice, or as unallocated credit for a student."""
    return crud_fee_payments.record_payment(db, tenant_id, payment, collected_by=get_user_identifier(user))

@router.get("/", response_model=List[FeePayment])
def list_fee_payments(
    invoice_id: Optional[int] = None,
    student_id: Optional[int] = None,
    payment_method: Optional[PaymentMethod] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_payments.get_payments(
        db, tenant_id,
        invoice_id=invoice_id,
        student_id=student_id,
        payment_method=payment_method.value if payment_method else None,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit
    )

@router.get("/{payment_id}", response_model=FeePayment)
def read_fee_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    db_payment = crud_fee_payments.get_payment(db, tenant_id, payment_id)
    if db_payment is None:
        raise HTTPException(status_code=404, detail="Payment not found")
    return db_payment

@router.get("/{payment_id}/receipt")
def download_fee_receipt(
    payment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    """Render the payment receipt as a PDF."""
    try:
        receipt_path = generate_fee_receipt(db, tenant_id, payment_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Payment not found")

    background_tasks.add_task(os.remove, receipt_path)
    logger.info(f"Receipt for payment {payment_id} generated for user {get_user_identifier(user)} in tenant {tenant_id}")
    return FileResponse(receipt_path, media_type="application/pdf", filename=os.path.basename(receipt_path))
