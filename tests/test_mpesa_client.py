import base64
from unittest.mock import MagicMock

import pytest
import requests

from utils.errors import GatewayError, GatewayTimeoutError, ValidationError
from utils.mpesa_client import MpesaClient, MpesaConfig, format_phone_number


@pytest.mark.parametrize("raw", [
    "0712345678",
    "+254712345678",
    "254712345678",
    "712345678",
    "0712 345 678",
    "0712-345-678",
])
def test_format_phone_number_safaricom(raw):
    assert format_phone_number(raw) == "254712345678"


def test_format_phone_number_new_prefix():
    assert format_phone_number("0110345678") == "254110345678"
    assert format_phone_number("110345678") == "254110345678"


@pytest.mark.parametrize("raw", ["", None, "12345", "0812345678901", "+1 555 010 9999"])
def test_format_phone_number_rejects(raw):
    with pytest.raises(ValidationError):
        format_phone_number(raw)


def test_format_phone_number_is_idempotent():
    once = format_phone_number("0712345678")
    assert format_phone_number(once) == once


def _response(status=200, body=None):
    response = MagicMock()
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = body if body is not None else {}
    response.text = str(body)
    return response


@pytest.fixture
def config():
    return MpesaConfig(
        consumer_key="key",
        consumer_secret="secret",
        short_code="174379",
        passkey="bfb279f9aa9bdbcf",
        callback_url="https://fees.test/mpesa/callback",
    )


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.get.return_value = _response(body={"access_token": "tok", "expires_in": "3599"})
    return session


def test_generate_password(config):
    client = MpesaClient(config, session=MagicMock())
    password = client.generate_password("20260101120000")
    assert base64.b64decode(password).decode() == "174379bfb279f9aa9bdbcf20260101120000"


def test_stk_push_payload(config, session):
    session.post.return_value = _response(body={
        "MerchantRequestID": "m-1", "CheckoutRequestID": "ws_CO_1", "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing"
    })
    client = MpesaClient(config, session=session)

    data = client.stk_push("0712345678", "1500.5", account_reference="INV2610000123",
                           description="School Fees - Amani Otieno")

    assert data["CheckoutRequestID"] == "ws_CO_1"
    _, kwargs = session.post.call_args
    payload = kwargs["json"]
    assert payload["Amount"] == 1501
    assert payload["PartyA"] == payload["PhoneNumber"] == "254712345678"
    assert payload["PartyB"] == "174379"
    assert payload["AccountReference"] == "INV261000012"
    assert payload["TransactionDesc"] == "School Fees -"
    assert payload["TransactionType"] == "CustomerPayBillOnline"
    assert kwargs["headers"]["Authorization"] == "Bearer tok"
    assert kwargs["timeout"] == 30

    _, token_kwargs = session.get.call_args
    assert token_kwargs["auth"] == ("key", "secret")
    assert token_kwargs["timeout"] == 15


def test_stk_push_rejected_by_gateway(config, session):
    session.post.return_value = _response(body={"ResponseCode": "1", "ResponseDescription": "Invalid PartyA"})
    client = MpesaClient(config, session=session)

    with pytest.raises(GatewayError) as exc_info:
        client.stk_push("0712345678", 10, "INV1", "Fees")
    assert exc_info.value.upstream == "Invalid PartyA"


def test_stk_push_http_error_carries_upstream_message(config, session):
    session.post.return_value = _response(status=400, body={"errorMessage": "Bad Request - Invalid Amount"})
    client = MpesaClient(config, session=session)

    with pytest.raises(GatewayError, match="Invalid Amount"):
        client.stk_push("0712345678", 10, "INV1", "Fees")


def test_auth_failure_is_gateway_error(config, session):
    session.get.return_value = _response(status=401, body={"errorMessage": "Invalid credentials"})
    client = MpesaClient(config, session=session)

    with pytest.raises(GatewayError, match="Invalid credentials") as exc_info:
        client.stk_push("0712345678", 10, "INV1", "Fees")
    assert not isinstance(exc_info.value, GatewayTimeoutError)
    session.post.assert_not_called()


def test_missing_credentials(config, session):
    config.consumer_key = ""
    with pytest.raises(GatewayError):
        MpesaClient(config, session=session).get_access_token()
    session.get.assert_not_called()


def test_timeout_is_retryable(config, session):
    session.post.side_effect = requests.Timeout("read timed out")
    client = MpesaClient(config, session=session)

    with pytest.raises(GatewayTimeoutError) as exc_info:
        client.query_stk_status("ws_CO_1")
    assert exc_info.value.retryable
    assert exc_info.value.status_code == 504


def test_connection_error_is_gateway_error(config, session):
    session.get.side_effect = requests.ConnectionError("connection refused")
    with pytest.raises(GatewayError, match="connection refused"):
        MpesaClient(config, session=session).get_access_token()


def test_invalid_phone_fails_before_any_request(config, session):
    client = MpesaClient(config, session=session)
    with pytest.raises(ValidationError):
        client.stk_push("12345", 10, "INV1", "Fees")
    session.get.assert_not_called()


def test_query_stk_status_payload(config, session):
    session.post.return_value = _response(body={"ResultCode": "1032", "ResultDesc": "Request cancelled by user"})
    client = MpesaClient(config, session=session)

    data = client.query_stk_status("ws_CO_1")

    assert data["ResultDesc"] == "Request cancelled by user"
    args, kwargs = session.post.call_args
    assert args[0].endswith("/mpesa/stkpushquery/v1/query")
    assert kwargs["json"]["CheckoutRequestID"] == "ws_CO_1"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("MPESA_ENV", "production")
    monkeypatch.delenv("MPESA_BASE_URL", raising=False)
    monkeypatch.setenv("MPESA_CALLBACK_TOKEN", "s3cret")
    config = MpesaConfig.from_env()
    assert config.base_url == "https://api.safaricom.co.ke"
    assert config.callback_token == "s3cret"
