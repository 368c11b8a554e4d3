from sqlalchemy import Column, Integer, Numeric, DateTime, String, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from database import Base
import enum
from models.audit_mixin import TimestampMixin

class MpesaTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

class MpesaTransaction(Base, TimestampMixin):
    """An outbound STK push request and its outcome.

    Status moves from pending to success or failed exactly once.
    """
    __tablename__ = "mpesa_transactions"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("fee_invoices.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    phone_number = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    merchant_request_id = Column(String(100), nullable=True)
    checkout_request_id = Column(String(100), nullable=True, unique=True, index=True)
    status = Column(String(20), default=MpesaTransactionStatus.PENDING.value, nullable=False, index=True)
    result_code = Column(Integer, nullable=True)
    result_desc = Column(Text, nullable=True)
    mpesa_receipt_number = Column(String(50), nullable=True)
    transaction_date = Column(DateTime(timezone=True), nullable=True)
    callback_payload = Column(JSON, nullable=True)
    initiated_by = Column(String, nullable=True)
    tenant_id = Column(String, index=True)

    invoice = relationship("FeeInvoice")
    student = relationship("Student")
