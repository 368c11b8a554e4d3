"""Fee discounts and their assignment to students."""
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from models.fee_discounts import DiscountType, FeeDiscount, StudentFeeDiscount
from models.students import Student
from schemas.fee_discounts import FeeDiscountCreate, StudentDiscountCreate
from utils.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def create_discount(db: Session, tenant_id: str, discount: FeeDiscountCreate, created_by: str) -> FeeDiscount:
    db_discount = FeeDiscount(
        name=discount.name,
        discount_type=discount.discount_type.value,
        value=discount.value,
        applicable_to=discount.applicable_to,
        description=discount.description,
        is_active=True,
        created_by=created_by,
        tenant_id=tenant_id
    )
    db.add(db_discount)
    db.commit()
    db.refresh(db_discount)
    logger.info(f"Fee discount '{db_discount.name}' created by {created_by} for tenant {tenant_id}")
    return db_discount


def get_discounts(db: Session, tenant_id: str, is_active: Optional[bool] = None):
    query = db.query(FeeDiscount).filter(FeeDiscount.tenant_id == tenant_id)
    if is_active is not None:
        query = query.filter(FeeDiscount.is_active == is_active)
    return query.order_by(FeeDiscount.name.asc()).all()


def apply_discount_to_student(db: Session, tenant_id: str, discount_id: int, assignment: StudentDiscountCreate,
                              applied_by: str) -> StudentFeeDiscount:
    if assignment.valid_from and assignment.valid_until and assignment.valid_until < assignment.valid_from:
        raise ValidationError("valid_until cannot be before valid_from")

    discount = db.query(FeeDiscount).filter(FeeDiscount.id == discount_id, FeeDiscount.tenant_id == tenant_id).first()
    if discount is None:
        raise NotFoundError("Discount not found")
    if not discount.is_active:
        raise ConflictError(f"Discount '{discount.name}' is not active")

    student = db.query(Student).filter(Student.id == assignment.student_id, Student.tenant_id == tenant_id).first()
    if student is None:
        raise NotFoundError(f"Student {assignment.student_id} not found")

    db_assignment = StudentFeeDiscount(
        student_id=student.id,
        discount_id=discount.id,
        applied_by=applied_by,
        reason=assignment.reason,
        valid_from=assignment.valid_from,
        valid_until=assignment.valid_until,
        is_active=True,
        created_by=applied_by,
        tenant_id=tenant_id
    )
    db.add(db_assignment)
    db.commit()
    db.refresh(db_assignment)
    logger.info(f"Discount '{discount.name}' applied to student {student.id} by {applied_by} for tenant {tenant_id}")
    return db_assignment


def get_student_discounts(db: Session, tenant_id: str, student_id: int, on_date: Optional[date] = None):
    """Active discount assignments of a student, limited to those valid on ``on_date`` when given."""
    query = db.query(StudentFeeDiscount).options(joinedload(StudentFeeDiscount.discount)).join(
        FeeDiscount, FeeDiscount.id == StudentFeeDiscount.discount_id
    ).filter(
        StudentFeeDiscount.tenant_id == tenant_id,
        StudentFeeDiscount.student_id == student_id,
        StudentFeeDiscount.is_active.is_(True),
        FeeDiscount.is_active.is_(True)
    )
    if on_date is not None:
        query = query.filter(
            or_(StudentFeeDiscount.valid_from.is_(None), StudentFeeDiscount.valid_from <= on_date),
            or_(StudentFeeDiscount.valid_until.is_(None), StudentFeeDiscount.valid_until >= on_date)
        )
    return query.order_by(StudentFeeDiscount.id.asc()).all()


def discount_amount_for(discount: FeeDiscount, total_amount: Decimal) -> Decimal:
    value = Decimal(discount.value)
    if discount.discount_type == DiscountType.PERCENTAGE.value:
        return (Decimal(total_amount) * value / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return value


def calculate_student_discount(db: Session, tenant_id: str, student_id: int, total_amount: Decimal,
                               on_date: Optional[date] = None) -> Decimal:
    """Total discount a student gets on ``total_amount``; never more than the total itself."""
    total_amount = Decimal(total_amount)
    discount = sum(
        (discount_amount_for(a.discount, total_amount) for a in get_student_discounts(db, tenant_id, student_id, on_date)),
        Decimal("0")
    )
    return min(discount, total_amount)
