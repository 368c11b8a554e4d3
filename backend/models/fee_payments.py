from sqlalchemy import Column, Integer, Numeric, DateTime, String, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin, now_local

class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    MPESA = "mpesa"
    BANK = "bank"
    CHEQUE = "cheque"
    CARD = "card"
    OTHER = "other"

class PaymentStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"

class FeePayment(Base, TimestampMixin):
    """A recorded payment. Rows are never updated or deleted once written."""
    __tablename__ = "fee_payments"
    __table_args__ = (UniqueConstraint('tenant_id', 'receipt_number', name='_tenant_receipt_number_uc'),)

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("fee_invoices.id"), nullable=True, index=True)  # NULL = unallocated
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    receipt_number = Column(String(30), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    transaction_id = Column(String(100), nullable=True)  # cheque number, M-Pesa receipt etc.
    status = Column(String(20), default=PaymentStatus.SUCCESS.value, nullable=False)
    payment_date = Column(DateTime(timezone=True), default=now_local, nullable=False)
    remarks = Column(Text, nullable=True)
    collected_by = Column(String, nullable=True)
    gateway_response = Column(JSON, nullable=True)
    tenant_id = Column(String, index=True)

    invoice = relationship("FeeInvoice", back_populates="payments")
    student = relationship("Student")
