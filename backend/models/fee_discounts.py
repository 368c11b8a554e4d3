from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin

class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"

class FeeDiscount(Base, TimestampMixin):
    __tablename__ = "fee_discounts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    discount_type = Column(String(20), nullable=False)
    value = Column(Numeric(12, 2), nullable=False)  # percent for percentage, KES for fixed
    applicable_to = Column(String(50), nullable=False, default="all")
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    tenant_id = Column(String, index=True)

class StudentFeeDiscount(Base, TimestampMixin):
    """A discount granted to one student, optionally for a date window."""
    __tablename__ = "student_fee_discounts"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    discount_id = Column(Integer, ForeignKey("fee_discounts.id"), nullable=False, index=True)
    applied_by = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    tenant_id = Column(String, index=True)

    discount = relationship("FeeDiscount")
    student = relationship("Student")
