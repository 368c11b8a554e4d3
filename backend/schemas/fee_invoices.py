from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from models.fee_invoices import InvoiceStatus

class FeeInvoiceCreate(BaseModel):
    student_id: int
    # None: summed from the active fee structures of the student's class
    total_amount: Optional[Decimal] = Field(default=None, gt=0)
    # None: computed from the student's assigned discounts
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    month: Optional[date] = None
    due_date: Optional[date] = None
    description: Optional[str] = None

class BulkInvoiceCreate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    due_date: date
    fee_type: str = "tuition"
    academic_year: Optional[str] = None
    class_name: Optional[str] = None
    description: Optional[str] = None

class BulkInvoiceItem(BaseModel):
    id: int
    invoice_number: str
    student_name: str
    amount: Decimal

class BulkInvoiceError(BaseModel):
    student: str
    error: str

class BulkInvoiceResult(BaseModel):
    total_students: int
    invoices_created: int
    errors_count: int
    invoices: List[BulkInvoiceItem]
    errors: List[BulkInvoiceError]

class FeeInvoice(BaseModel):
    id: int
    invoice_number: str
    student_id: int
    month: Optional[date] = None
    description: Optional[str] = None
    total_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    due_date: Optional[date] = None
    status: InvoiceStatus
    tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class Defaulter(BaseModel):
    student_id: int
    admission_number: str
    first_name: str
    last_name: str
    class_name: Optional[str] = None
    parent_phone: Optional[str] = None
    total_due: Decimal
    pending_invoices: int

class StudentFeeAccount(BaseModel):
    student_id: int
    total_invoiced: Decimal
    total_paid: Decimal
    total_balance: Decimal
    unallocated_credit: Decimal
    invoices: List[FeeInvoice]
    payments: List["FeePaymentSummary"]

class FeePaymentSummary(BaseModel):
    id: int
    receipt_number: str
    invoice_id: Optional[int] = None
    amount: Decimal
    payment_method: str
    transaction_id: Optional[str] = None
    payment_date: datetime

    class Config:
        from_attributes = True

StudentFeeAccount.model_rebuild()

class FeeStatistics(BaseModel):
    total_invoices: int
    total_amount: Decimal
    total_collected: Decimal
    total_pending: Decimal
    paid_invoices: int
    pending_invoices: int
    overdue_invoices: int
    collection_percentage: float
