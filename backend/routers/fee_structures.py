from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import get_db
from crud import fee_structures as crud_fee_structures
from schemas.fee_structures import (
    FeeStructure as FeeStructureSchema,
    FeeStructureCreate,
    FeeStructureUpdate,
)
from utils.auth_utils import get_current_user, get_user_identifier, require_group
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/fee-structures", tags=["Fee Structures"])
logger = logging.getLogger("fee_structures")

FINANCE_GROUPS = ["admin", "finance"]

@router.post("/", response_model=FeeStructureSchema, status_code=status.HTTP_201_CREATED)
def create_fee_structure(
    fee: FeeStructureCreate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    """Add a fee line. Leave ``class_name`` empty to charge it to every class."""
    return crud_fee_structures.create_fee_structure(db, tenant_id, fee, created_by=get_user_identifier(user))

@router.get("/", response_model=List[FeeStructureSchema])
def list_fee_structures(
    class_name: Optional[str] = None,
    academic_year: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_structures.get_fee_structures(
        db, tenant_id, class_name=class_name, academic_year=academic_year, is_active=is_active
    )

@router.get("/{fee_structure_id}", response_model=FeeStructureSchema)
def read_fee_structure(
    fee_structure_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_structures.get_fee_structure(db, tenant_id, fee_structure_id)

@router.put("/{fee_structure_id}", response_model=FeeStructureSchema)
def update_fee_structure(
    fee_structure_id: int,
    fee: FeeStructureUpdate,
    db: Session = Depends(get_db),
    user: dict = Depends(require_group(FINANCE_GROUPS)),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_fee_structures.update_fee_structure(
        db, tenant_id, fee_structure_id, fee, updated_by=get_user_identifier(user)
    )
