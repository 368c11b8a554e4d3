from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Optional
import hmac
import logging

from database import get_db
from crud import mpesa_callbacks as crud_mpesa_callbacks
from crud import mpesa_transactions as crud_mpesa_transactions
from schemas.mpesa import CallbackAck, MpesaTransactionDetail, StkPushRequest, StkPushResponse
from utils.auth_utils import get_current_user, get_user_identifier
from utils.errors import ReconciliationError
from utils.mpesa_client import MpesaClient, get_mpesa_client
from utils.tenancy import get_tenant_id

router = APIRouter(prefix="/mpesa", tags=["M-Pesa"])
logger = logging.getLogger("mpesa")

@router.post("/stk-push", response_model=StkPushResponse)
def initiate_stk_push(
    request: StkPushRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id),
    client: MpesaClient = Depends(get_mpesa_client)
):
    """Send an M-Pesa PIN prompt to the payer's phone for an invoice."""
    return crud_mpesa_transactions.initiate_stk_push(
        db, tenant_id,
        invoice_id=request.invoice_id,
        phone_number=request.phone_number,
        amount=request.amount,
        initiated_by=get_user_identifier(user),
        client=client
    )

@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(
    request: Request,
    token: Optional[str] = None,
    db: Session = Depends(get_db),
    client: MpesaClient = Depends(get_mpesa_client)
):
    """
    Daraja result webhook. No user authentication.

    Always answers ResultCode 0 so the gateway does not keep retrying; every
    problem is logged instead.
    """
    expected_token = client.config.callback_token
    if expected_token and not hmac.compare_digest(token or "", expected_token):
        logger.warning(f"Rejected M-Pesa callback with invalid token from {request.client.host if request.client else 'unknown'}")
        return CallbackAck()

    try:
        payload = await request.json()
    except ValueError:
        logger.error("M-Pesa callback body is not valid JSON")
        return CallbackAck()

    logger.info(f"M-Pesa callback received: {payload}")
    try:
        await run_in_threadpool(crud_mpesa_callbacks.handle_callback, db, payload)
    except ReconciliationError as e:
        logger.error(f"M-Pesa callback rejected: {e}. Payload: {payload}")
    except Exception:
        logger.exception(f"M-Pesa callback processing failed. Payload: {payload}")
    return CallbackAck()

@router.get("/status/{checkout_request_id}")
def query_stk_status(
    checkout_request_id: str,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id),
    client: MpesaClient = Depends(get_mpesa_client)
):
    """Live status straight from the gateway."""
    return crud_mpesa_transactions.query_transaction_status(db, tenant_id, checkout_request_id, client)

@router.get("/transactions/student/{student_id}", response_model=List[MpesaTransactionDetail])
def read_student_transactions(
    student_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_mpesa_transactions.get_student_transactions(db, tenant_id, student_id)

@router.get("/transactions/{transaction_id}", response_model=MpesaTransactionDetail)
def read_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user: dict = Depends(get_current_user),
    tenant_id: str = Depends(get_tenant_id)
):
    return crud_mpesa_transactions.get_transaction(db, tenant_id, transaction_id)
