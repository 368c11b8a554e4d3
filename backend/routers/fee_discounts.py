from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import get_db
from crud import fee_discounts as crud_fee_discounts
from schemas.fee_discounts import (
    FeeDiscount as FeeDiscountSchema,
    FeeDiscountCreate,
    StudentDiscountCreate,
    StudentFeeDiscount as StudentFeeDiscountSchema,
)
from utils.auth_utils import get_current_user, get_user_identifier, require_group
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/fee-discounts", tags=["Fee Discounts"])
logger = logging.getLogger("fee_discounts")

FINANCE_GROUPS = ["admin", "finance"]

@router.post("/", response_model=FeeDiscountSchema, status_code=status.HTTP_201_CREATED)
def create_discount(
    discount: FeeDiscountCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_discounts.create_discount(db, tenant_id, discount, created_by=get_user_identifier(user))

@router.get("/", response_model=List[FeeDiscountSchema])
def list_discounts(
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_discounts.get_discounts(db, tenant_id, is_active=is_active)

@router.post("/{discount_id}/students", response_model=StudentFeeDiscountSchema, status_code=status.HTTP_201_CREATED)
def apply_discount_to_student(
    discount_id: int,
    assignment: StudentDiscountCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Assign a discount to a student; it applies to invoices generated while it is valid."""
    return crud_fee_discounts.apply_discount_to_student(
        db, tenant_id, discount_id, assignment, applied_by=get_user_identifier(user)
    )

@router.get("/students/{student_id}", response_model=List[StudentFeeDiscountSchema])
def list_student_discounts(
    student_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_discounts.get_student_discounts(db, tenant_id, student_id)
