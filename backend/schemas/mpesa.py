from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal
from models.mpesa_transactions import MpesaTransactionStatus

class StkPushRequest(BaseModel):
    invoice_id: int
    phone_number: str
    amount: Decimal

class StkPushResponse(BaseModel):
    success: bool = True
    transaction_id: int
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    response_description: Optional[str] = None
    message: str

class MpesaTransaction(BaseModel):
    id: int
    invoice_id: int
    student_id: int
    phone_number: str
    amount: Decimal
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    status: MpesaTransactionStatus
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[datetime] = None
    initiated_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class MpesaTransactionDetail(MpesaTransaction):
    invoice_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


# --- Callback payload ---
# {"Body": {"stkCallback": {"MerchantRequestID", "CheckoutRequestID", "ResultCode",
#   "ResultDesc", "CallbackMetadata": {"Item": [{"Name", "Value"}, ...]}}}}

class CallbackItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="Name")
    value: Any = Field(default=None, alias="Value")

class CallbackMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: List[CallbackItem] = Field(default_factory=list, alias="Item")

    def get(self, name: str, default: Any = None) -> Any:
        """Value of the item called ``name``; item order carries no meaning."""
        for item in self.items:
            if item.name == name:
                return item.value
        return default

class StkCallback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    merchant_request_id: Optional[str] = Field(default=None, alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    result_code: int = Field(alias="ResultCode")
    result_desc: Optional[str] = Field(default=None, alias="ResultDesc")
    metadata: CallbackMetadata = Field(default_factory=CallbackMetadata, alias="CallbackMetadata")

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(alias="stkCallback")

class CallbackPayload(BaseModel):
    body: CallbackBody = Field(alias="Body")

class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Success"
