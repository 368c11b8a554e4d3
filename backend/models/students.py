from sqlalchemy import Column, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Student(Base, TimestampMixin):
    __tablename__ = "students"
    __table_args__ = (UniqueConstraint('tenant_id', 'admission_number', name='_tenant_admission_number_uc'),)

    id = Column(Integer, primary_key=True, index=True)
    admission_number = Column(String(50), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    class_name = Column(String(50), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="active")  # active / inactive
    parent_phone = Column(String(20), nullable=True)
    tenant_id = Column(String, index=True)

    invoices = relationship("FeeInvoice", back_populates="student")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"
