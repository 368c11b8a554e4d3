"""
Reconciles STK push callbacks from Daraja with local transactions.

The callback endpoint is called by the gateway, not by a user, so nothing in
here raises to the HTTP layer for business outcomes: unknown or repeated
callbacks are reported through the returned ``outcome`` and logged.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import pytz
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from crud import fee_invoices as crud_fee_invoices
from crud import mpesa_transactions as crud_mpesa_transactions
from crud.fee_payments import create_payment_row
from models.audit_mixin import APP_TIMEZONE
from models.fee_invoices import FeeInvoice
from models.fee_payments import PaymentMethod
from models.mpesa_transactions import MpesaTransaction, MpesaTransactionStatus
from schemas.mpesa import CallbackPayload, StkCallback
from utils.errors import ConflictError, NotFoundError, ReconciliationError

logger = logging.getLogger(__name__)

MPESA_RECEIPT_PREFIX = "MREC"


def parse_callback(payload) -> StkCallback:
    try:
        return CallbackPayload.model_validate(payload).body.stk_callback
    except PydanticValidationError as e:
        raise ReconciliationError(f"Malformed M-Pesa callback payload: {e.errors()}")


def parse_transaction_date(value) -> Optional[datetime]:
    """Daraja sends TransactionDate as a YYYYMMDDHHMMSS number in Kenyan time."""
    if value in (None, ""):
        return None
    try:
        naive = datetime.strptime(str(value), "%Y%m%d%H%M%S")
    except ValueError:
        logger.warning(f"Unparseable M-Pesa TransactionDate: {value}")
        return None
    return pytz.timezone(APP_TIMEZONE).localize(naive)


def _paid_amount(callback: StkCallback, transaction: MpesaTransaction) -> Decimal:
    reported = callback.metadata.get("Amount")
    if reported is None:
        return Decimal(transaction.amount)
    try:
        amount = Decimal(str(reported))
    except InvalidOperation:
        logger.warning(f"Unparseable M-Pesa Amount '{reported}' for checkout {callback.checkout_request_id}, using requested amount")
        return Decimal(transaction.amount)
    if not amount.is_finite() or amount <= 0:
        logger.warning(f"Invalid M-Pesa Amount '{reported}' for checkout {callback.checkout_request_id}, using requested amount")
        return Decimal(transaction.amount)
    if amount != Decimal(transaction.amount):
        logger.warning(f"M-Pesa paid {amount} for checkout {callback.checkout_request_id}, requested {transaction.amount}")
    return amount


def _allocate(db: Session, tenant_id: str, invoice_id: Optional[int], amount: Decimal, mpesa_receipt) -> Decimal:
    """Applies as much of ``amount`` as the invoice still owes. Returns the part applied."""
    if invoice_id is None:
        return Decimal("0")
    invoice = db.query(FeeInvoice).filter(
        FeeInvoice.id == invoice_id, FeeInvoice.tenant_id == tenant_id
    ).populate_existing().first()
    if invoice is None or invoice.balance_amount <= 0:
        logger.warning(f"M-Pesa payment {mpesa_receipt}: invoice {invoice_id} is missing or settled")
        return Decimal("0")

    allocated = min(amount, Decimal(invoice.balance_amount))
    try:
        crud_fee_invoices.apply_payment(db, tenant_id, invoice_id, allocated, changed_by="mpesa-callback")
    except (ConflictError, NotFoundError) as e:
        # Balance moved since the read above
        logger.warning(f"M-Pesa payment {mpesa_receipt} could not be applied to invoice {invoice_id}: {e}")
        return Decimal("0")
    return allocated


def handle_callback(db: Session, payload: dict) -> dict:
    """
    Applies one callback.

    Returns ``{"outcome": ...}`` with one of ``success``, ``failed``,
    ``duplicate`` or ``not_found``. Raises `ReconciliationError` for a
    malformed payload; any database error propagates after rollback.
    """
    callback = parse_callback(payload)
    checkout_id = callback.checkout_request_id

    transaction = crud_mpesa_transactions.get_by_checkout_request_id(db, checkout_id)
    if transaction is None:
        logger.error(f"Transaction not found for CheckoutRequestID {checkout_id}")
        return {"outcome": "not_found", "checkout_request_id": checkout_id}

    tenant_id = transaction.tenant_id
    if transaction.status != MpesaTransactionStatus.PENDING.value:
        logger.info(f"Ignoring repeated callback for checkout {checkout_id}: transaction {transaction.id} is already {transaction.status}")
        return {"outcome": "duplicate", "transaction_id": transaction.id}

    try:
        if callback.succeeded:
            result = _apply_success(db, transaction, callback, payload)
        else:
            result = _apply_failure(db, transaction, callback, payload)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"M-Pesa callback for checkout {checkout_id} reconciled as {result['outcome']} (tenant {tenant_id})")
    return result


def _apply_success(db: Session, transaction: MpesaTransaction, callback: StkCallback, payload: dict) -> dict:
    mpesa_receipt = callback.metadata.get("MpesaReceiptNumber")
    claimed = crud_mpesa_transactions.complete_transaction(
        db, transaction.id, MpesaTransactionStatus.SUCCESS,
        result_code=callback.result_code,
        result_desc=callback.result_desc,
        mpesa_receipt_number=mpesa_receipt,
        transaction_date=parse_transaction_date(callback.metadata.get("TransactionDate")),
        callback_payload=payload,
        updated_by="mpesa-callback"
    )
    if not claimed:
        return {"outcome": "duplicate", "transaction_id": transaction.id}

    tenant_id = transaction.tenant_id
    amount = _paid_amount(callback, transaction)
    phone = callback.metadata.get("PhoneNumber") or transaction.phone_number

    allocated = _allocate(db, tenant_id, transaction.invoice_id, amount, mpesa_receipt)
    # Money has already left the payer's wallet; whatever the invoice cannot take is student credit.
    credit = amount - allocated

    payments = []
    for invoice_id, part in ((transaction.invoice_id, allocated), (None, credit)):
        if part <= 0:
            continue
        payments.append(create_payment_row(
            db, tenant_id,
            student_id=transaction.student_id,
            amount=part,
            payment_method=PaymentMethod.MPESA.value,
            invoice_id=invoice_id,
            transaction_id=mpesa_receipt,
            remarks=f"M-Pesa payment - {mpesa_receipt} from {phone}",
            collected_by=transaction.initiated_by,
            gateway_response=payload,
            receipt_prefix=MPESA_RECEIPT_PREFIX
        ))

    if credit > 0:
        logger.warning(f"M-Pesa payment {mpesa_receipt}: {credit} of {amount} kept unallocated for student {transaction.student_id}")
    logger.info(f"M-Pesa payment {mpesa_receipt} of {amount} recorded as {', '.join(p.receipt_number for p in payments)} for transaction {transaction.id}")
    return {"outcome": "success", "transaction_id": transaction.id, "payment_id": payments[0].id}


def _apply_failure(db: Session, transaction: MpesaTransaction, callback: StkCallback, payload: dict) -> dict:
    claimed = crud_mpesa_transactions.complete_transaction(
        db, transaction.id, MpesaTransactionStatus.FAILED,
        result_code=callback.result_code,
        result_desc=callback.result_desc,
        callback_payload=payload,
        updated_by="mpesa-callback"
    )
    if not claimed:
        return {"outcome": "duplicate", "transaction_id": transaction.id}
    logger.info(f"M-Pesa payment failed for transaction {transaction.id}: {callback.result_desc}")
    return {"outcome": "failed", "transaction_id": transaction.id, "reason": callback.result_desc}
