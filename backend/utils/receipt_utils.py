from fpdf import FPDF
from sqlalchemy.orm import Session
from models.fee_payments import FeePayment
from utils.formatting import format_kes_currency, amount_to_words
import os
import tempfile
import uuid
import logging

logger = logging.getLogger(__name__)

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "School Fees Office")
RECEIPT_TEMP_DIR = os.getenv("RECEIPT_TEMP_DIR", os.path.join(tempfile.gettempdir(), "fee_receipts"))

class PDF(FPDF):
    def header(self):
        self.set_font('Arial', 'B', 12)
        self.cell(0, 10, 'Fee Payment Receipt', 0, 1, 'C')
        self.ln(10)

    def footer(self):
        self.set_y(-15)
        self.set_font('Arial', 'I', 8)
        self.cell(0, 10, f'Page {self.page_no()}', 0, 0, 'C')

def generate_fee_receipt(db: Session, tenant_id: str, payment_id: int) -> str:
    """
    Generates a PDF receipt for a recorded fee payment.

    Args:
        db: The database session.
        tenant_id: Tenant that owns the payment.
        payment_id: The ID of the fee payment.

    Returns:
        The path to the generated PDF file. The caller removes it once served.
    """
    db_payment = db.query(FeePayment).filter(FeePayment.id == payment_id, FeePayment.tenant_id == tenant_id).first()
    if not db_payment:
        raise FileNotFoundError("Payment not found")

    student = db_payment.student
    invoice = db_payment.invoice

    pdf = PDF()
    pdf.add_page()

    pdf.set_font('Arial', 'B', 16)
    pdf.cell(0, 10, SCHOOL_NAME, 0, 1, 'L')
    pdf.ln(5)

    pdf.set_font('Arial', '', 12)
    pdf.cell(0, 10, f'Receipt #: {db_payment.receipt_number}', 0, 1, 'L')
    pdf.cell(0, 10, f'Payment Date: {db_payment.payment_date.strftime("%Y-%m-%d %H:%M")}', 0, 1, 'L')
    pdf.cell(0, 10, f'Payment Method: {db_payment.payment_method.upper()}', 0, 1, 'L')
    if db_payment.transaction_id:
        pdf.cell(0, 10, f'Reference: {db_payment.transaction_id}', 0, 1, 'L')
    pdf.ln(5)

    pdf.set_font('Arial', 'B', 12)
    pdf.cell(0, 10, 'Received From:', 0, 1, 'L')
    pdf.set_font('Arial', '', 12)
    pdf.cell(0, 10, f'{student.full_name} ({student.admission_number})', 0, 1, 'L')
    if student.class_name:
        pdf.cell(0, 10, f'Class: {student.class_name}', 0, 1, 'L')
    pdf.ln(10)

    pdf.set_font('Arial', 'B', 12)
    pdf.cell(100, 10, '', 0, 0)
    pdf.cell(45, 10, 'Amount Paid:', 1, 0, 'R')
    pdf.cell(45, 10, format_kes_currency(db_payment.amount), 1, 1, 'R')

    if invoice:
        pdf.cell(100, 10, '', 0, 0)
        pdf.cell(45, 10, 'Invoice:', 1, 0, 'R')
        pdf.cell(45, 10, invoice.invoice_number, 1, 1, 'R')

        pdf.cell(100, 10, '', 0, 0)
        pdf.cell(45, 10, 'Balance Due:', 1, 0, 'R')
        pdf.cell(45, 10, format_kes_currency(invoice.balance_amount), 1, 1, 'R')
    else:
        pdf.cell(0, 10, 'Held as credit on the student account.', 0, 1, 'L')

    pdf.ln(5)
    pdf.set_font('Arial', 'I', 10)
    pdf.multi_cell(0, 8, f'Amount in words: {amount_to_words(db_payment.amount)}')

    if not os.path.exists(RECEIPT_TEMP_DIR):
        os.makedirs(RECEIPT_TEMP_DIR)

    filename = f'receipt_{db_payment.receipt_number}_{uuid.uuid4().hex}.pdf'
    filepath = os.path.join(RECEIPT_TEMP_DIR, filename)
    logger.debug(f"Writing receipt for payment {db_payment.id} to {filepath}")

    pdf.output(filepath)

    return filepath
