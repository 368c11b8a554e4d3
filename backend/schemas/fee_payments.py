from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from models.fee_payments import PaymentMethod, PaymentStatus

class FeePaymentCreate(BaseModel):
    invoice_id: Optional[int] = None
    student_id: Optional[int] = None
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    transaction_id: Optional[str] = Field(default=None, max_length=100)
    remarks: Optional[str] = None

class FeePayment(BaseModel):
    id: int
    invoice_id: Optional[int] = None
    student_id: int
    receipt_number: str
    amount: Decimal
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    status: PaymentStatus
    payment_date: datetime
    remarks: Optional[str] = None
    collected_by: Optional[str] = None
    tenant_id: Optional[str] = None

    class Config:
        from_attributes = True
