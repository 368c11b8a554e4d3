from sqlalchemy import Column, Integer, String, Numeric, Date, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import AuditMixin

class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"

class FeeInvoice(Base, AuditMixin):
    __tablename__ = "fee_invoices"
    __table_args__ = (
        UniqueConstraint('tenant_id', 'invoice_number', name='_tenant_invoice_number_uc'),
        UniqueConstraint('tenant_id', 'student_id', 'month', name='_tenant_student_month_uc'),
        CheckConstraint('balance_amount >= 0', name='ck_fee_invoices_balance_non_negative'),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(30), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    month = Column(Date, nullable=True)  # billing period
    description = Column(String(255), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), default=0, server_default='0', nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), default=0, server_default='0', nullable=False)
    # Always net_amount - paid_amount; only written by the ledger update
    balance_amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=True)
    status = Column(String(20), default=InvoiceStatus.PENDING.value, nullable=False, index=True)
    tenant_id = Column(String, index=True)

    student = relationship("Student", back_populates="invoices")
    payments = relationship("FeePayment", back_populates="invoice")
