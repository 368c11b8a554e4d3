"""Error categories raised by the fee ledger and the M-Pesa integration.

Routers do not need to catch these: `main.py` registers a handler that maps
each category to its HTTP status. `ReconciliationError` is the exception:
callback failures are logged and never surfaced to the gateway.
"""
from typing import Optional
from fastapi import status


class FeeError(Exception):
    category = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FeeError):
    """Bad or missing input, rejected before any store or gateway call."""
    category = "validation"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(FeeError):
    category = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(FeeError):
    """Business-rule rejection such as paying more than the balance."""
    category = "conflict"
    status_code = status.HTTP_409_CONFLICT


class GatewayError(FeeError):
    """The payment gateway could not be reached or refused the request."""
    category = "gateway"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, upstream: Optional[str] = None):
        super().__init__(message)
        self.upstream = upstream

    def __str__(self):
        if self.upstream:
            return f"{self.message}: {self.upstream}"
        return self.message


class GatewayTimeoutError(GatewayError):
    category = "gateway_timeout"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    retryable = True


class ReconciliationError(FeeError):
    category = "reconciliation"
