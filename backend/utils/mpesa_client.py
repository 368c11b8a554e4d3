"""
Safaricom Daraja (M-Pesa) client: OAuth token, STK push and STK status query.

Every failure reaching the gateway is raised as `GatewayError` with the
upstream message attached; timeouts are raised as the retryable
`GatewayTimeoutError`.
"""
import base64
import logging
import os
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import requests
from dotenv import load_dotenv

from models.audit_mixin import now_local
from utils.errors import GatewayError, GatewayTimeoutError, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

TOKEN_TIMEOUT = 15
REQUEST_TIMEOUT = 30

# Field limits imposed by Daraja
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13


def format_phone_number(phone) -> str:
    """
    Normalizes a Kenyan mobile number to ``254XXXXXXXXX``.

    Accepts 07XXXXXXXX / 01XXXXXXXX, 254XXXXXXXXX (with or without '+',
    spaces or dashes) and the bare 9-digit 7XXXXXXXX / 1XXXXXXXX form.
    """
    if phone is None or str(phone).strip() == "":
        raise ValidationError("Phone number is required")
    cleaned = re.sub(r"\D", "", str(phone))

    if len(cleaned) == 10 and cleaned.startswith("0"):
        return "254" + cleaned[1:]
    if len(cleaned) == 12 and cleaned.startswith("254"):
        return cleaned
    if len(cleaned) == 9 and cleaned[0] in ("7", "1"):
        return "254" + cleaned
    raise ValidationError(f"Invalid phone number format: {phone}. Use 07XXXXXXXX or 254XXXXXXXXX")


@dataclass
class MpesaConfig:
    consumer_key: str
    consumer_secret: str
    short_code: str
    passkey: str
    callback_url: str
    base_url: str = SANDBOX_URL
    callback_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "MpesaConfig":
        env = os.getenv("MPESA_ENV", "sandbox")
        return cls(
            consumer_key=os.getenv("MPESA_CONSUMER_KEY", ""),
            consumer_secret=os.getenv("MPESA_CONSUMER_SECRET", ""),
            short_code=os.getenv("MPESA_SHORTCODE", "174379"),
            passkey=os.getenv("MPESA_PASSKEY", ""),
            callback_url=os.getenv("MPESA_CALLBACK_URL", ""),
            base_url=os.getenv("MPESA_BASE_URL", PRODUCTION_URL if env == "production" else SANDBOX_URL),
            callback_token=os.getenv("MPESA_CALLBACK_TOKEN") or None,
        )


def _upstream_message(response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return data.get("errorMessage") or data.get("ResponseDescription") or str(data)


class MpesaClient:
    def __init__(self, config: Optional[MpesaConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or MpesaConfig.from_env()
        self.session = session or requests.Session()

    def get_access_token(self) -> str:
        """Fetches a fresh OAuth token. Tokens are not cached across operations."""
        if not self.config.consumer_key or not self.config.consumer_secret:
            raise GatewayError("M-Pesa is not configured", "missing consumer key or secret")
        try:
            response = self.session.get(
                f"{self.config.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.config.consumer_key, self.config.consumer_secret),
                timeout=TOKEN_TIMEOUT,
            )
        except requests.Timeout as e:
            logger.error(f"M-Pesa OAuth timed out: {e}")
            raise GatewayTimeoutError("M-Pesa authentication timed out", str(e))
        except requests.RequestException as e:
            logger.error(f"M-Pesa OAuth error: {e}")
            raise GatewayError("Failed to authenticate with M-Pesa", str(e))

        if not response.ok:
            upstream = _upstream_message(response)
            logger.error(f"M-Pesa OAuth error: {upstream}")
            raise GatewayError("Failed to authenticate with M-Pesa", upstream)

        token = response.json().get("access_token")
        if not token:
            raise GatewayError("Failed to authenticate with M-Pesa", "no access token in OAuth response")
        return token

    def generate_timestamp(self) -> str:
        return now_local().strftime("%Y%m%d%H%M%S")

    def generate_password(self, timestamp: str) -> str:
        raw = f"{self.config.short_code}{self.config.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _post(self, path: str, payload: dict, action: str) -> dict:
        access_token = self.get_access_token()
        try:
            response = self.session.post(
                f"{self.config.base_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.Timeout as e:
            logger.error(f"M-Pesa {action} timed out: {e}")
            raise GatewayTimeoutError(f"M-Pesa {action} timed out", str(e))
        except requests.RequestException as e:
            logger.error(f"M-Pesa {action} error: {e}")
            raise GatewayError(f"M-Pesa {action} failed", str(e))

        if not response.ok:
            upstream = _upstream_message(response)
            logger.error(f"M-Pesa {action} error: {upstream}")
            raise GatewayError(f"M-Pesa {action} failed", upstream)
        try:
            return response.json()
        except ValueError:
            raise GatewayError(f"M-Pesa {action} failed", "response was not JSON")

    def stk_push(self, phone, amount, account_reference: str, description: str) -> dict:
        """Sends the PIN prompt to ``phone``. Returns the Daraja response body."""
        formatted_phone = format_phone_number(phone)
        timestamp = self.generate_timestamp()
        payload = {
            "BusinessShortCode": self.config.short_code,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # Whole shillings only
            "Amount": int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            "PartyA": formatted_phone,
            "PartyB": self.config.short_code,
            "PhoneNumber": formatted_phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": str(account_reference)[:ACCOUNT_REFERENCE_MAX],
            "TransactionDesc": str(description)[:TRANSACTION_DESC_MAX],
        }
        logger.info(f"Initiating STK Push: phone={formatted_phone}, amount={payload['Amount']}, ref={payload['AccountReference']}")
        data = self._post("/mpesa/stkpush/v1/processrequest", payload, "STK push")
        if str(data.get("ResponseCode")) != "0":
            upstream = data.get("errorMessage") or data.get("ResponseDescription") or str(data)
            raise GatewayError("M-Pesa STK push was rejected", upstream)
        return data

    def query_stk_status(self, checkout_request_id: str) -> dict:
        timestamp = self.generate_timestamp()
        payload = {
            "BusinessShortCode": self.config.short_code,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        return self._post("/mpesa/stkpushquery/v1/query", payload, "status query")


def get_mpesa_client() -> MpesaClient:
    """FastAPI dependency; overridden in tests."""
    return MpesaClient()
