from sqlalchemy import Boolean, Column, Integer, Numeric, String, Text
from database import Base
from models.audit_mixin import TimestampMixin

class FeeStructure(Base, TimestampMixin):
    """A recurring fee line. ``class_name`` NULL applies it to every class."""
    __tablename__ = "fee_structures"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    class_name = Column(String(50), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    frequency = Column(String(20), nullable=False, default="term")  # monthly / term / annual / once
    due_day = Column(Integer, nullable=False, default=10)
    is_mandatory = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    academic_year = Column(String(20), nullable=True)
    tenant_id = Column(String, index=True)
