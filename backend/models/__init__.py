from models.audit_log import AuditLog
from models.students import Student
from models.fee_structures import FeeStructure
from models.fee_discounts import FeeDiscount, StudentFeeDiscount, DiscountType
from models.fee_invoices import FeeInvoice, InvoiceStatus
from models.fee_payments import FeePayment, PaymentMethod, PaymentStatus
from models.mpesa_transactions import MpesaTransaction, MpesaTransactionStatus
from models.document_sequences import DocumentSequence

__all__ = ['AuditLog', 'DiscountType', 'DocumentSequence', 'FeeDiscount', 'FeeInvoice', 'FeePayment', 'FeeStructure', 'InvoiceStatus', 'MpesaTransaction', 'MpesaTransactionStatus', 'PaymentMethod', 'PaymentStatus', 'Student', 'StudentFeeDiscount',]
