import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from models.fee_structures import FeeStructure
from schemas.fee_structures import FeeStructureCreate, FeeStructureUpdate
from utils.errors import NotFoundError

logger = logging.getLogger(__name__)


def create_fee_structure(db: Session, tenant_id: str, fee: FeeStructureCreate, created_by: str) -> FeeStructure:
    db_fee = FeeStructure(**fee.model_dump(), is_active=True, created_by=created_by, tenant_id=tenant_id)
    db.add(db_fee)
    db.commit()
    db.refresh(db_fee)
    logger.info(f"Fee structure '{db_fee.name}' ({db_fee.amount}) created by {created_by} for tenant {tenant_id}")
    return db_fee


def get_fee_structure(db: Session, tenant_id: str, fee_structure_id: int) -> FeeStructure:
    db_fee = db.query(FeeStructure).filter(
        FeeStructure.id == fee_structure_id,
        FeeStructure.tenant_id == tenant_id
    ).first()
    if db_fee is None:
        raise NotFoundError("Fee structure not found")
    return db_fee


def get_fee_structures(
    db: Session,
    tenant_id: str,
    class_name: Optional[str] = None,
    academic_year: Optional[str] = None,
    is_active: Optional[bool] = None
):
    query = db.query(FeeStructure).filter(FeeStructure.tenant_id == tenant_id)
    if class_name:
        query = query.filter(FeeStructure.class_name == class_name)
    if academic_year:
        query = query.filter(FeeStructure.academic_year == academic_year)
    if is_active is not None:
        query = query.filter(FeeStructure.is_active == is_active)
    return query.order_by(FeeStructure.name.asc()).all()


def update_fee_structure(db: Session, tenant_id: str, fee_structure_id: int, fee: FeeStructureUpdate, updated_by: str) -> FeeStructure:
    db_fee = get_fee_structure(db, tenant_id, fee_structure_id)
    for key, value in fee.model_dump(exclude_unset=True).items():
        setattr(db_fee, key, value)
    db_fee.updated_by = updated_by
    db.commit()
    db.refresh(db_fee)
    logger.info(f"Fee structure {fee_structure_id} updated by {updated_by} for tenant {tenant_id}")
    return db_fee


def get_class_fee_total(db: Session, tenant_id: str, class_name: Optional[str]) -> Decimal:
    """Sum of the active fee lines for a class, including lines that apply to every class."""
    class_filter = FeeStructure.class_name.is_(None)
    if class_name:
        class_filter = or_(FeeStructure.class_name == class_name, class_filter)
    total = db.query(func.coalesce(func.sum(FeeStructure.amount), 0)).filter(
        FeeStructure.tenant_id == tenant_id,
        FeeStructure.is_active.is_(True),
        class_filter
    ).scalar()
    return Decimal(str(total))
