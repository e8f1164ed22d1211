"""
Domain Errors — raised by the service layer, rendered by the API handler.

`message` is safe to show to any user; `detail` may carry raw gateway or
storage text and is only exposed to admins.
"""
from typing import Optional


class PaymentError(Exception):
    """Base class for every error the donation core raises on purpose."""

    error_code = "PAYMENT_ERROR"
    status_code = 400

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFound(PaymentError):
    error_code = "NOT_FOUND"
    status_code = 404


class Forbidden(PaymentError):
    error_code = "FORBIDDEN"
    status_code = 403


class InvalidState(PaymentError):
    """Operation not permitted for the record's current status."""
    error_code = "INVALID_STATE"
    status_code = 409


class InvalidTransition(InvalidState):
    """Status-machine violation (e.g. completing an already completed payment)."""
    error_code = "INVALID_TRANSITION"


class InvalidAmount(PaymentError):
    error_code = "INVALID_AMOUNT"
    status_code = 422


class MissingTaxInfo(PaymentError):
    error_code = "MISSING_TAX_INFO"
    status_code = 422


class ConcurrentModification(PaymentError):
    error_code = "CONCURRENT_MODIFICATION"
    status_code = 409


class GatewayError(PaymentError):
    """Upstream payment provider failure. Retryable unless stated otherwise."""
    error_code = "GATEWAY_ERROR"
    status_code = 502
    retryable = True


class GatewayTimeout(GatewayError):
    error_code = "GATEWAY_TIMEOUT"
    status_code = 504


class GatewayDeclined(GatewayError):
    """The gateway explicitly refused the charge (hard decline)."""
    error_code = "PAYMENT_DECLINED"
    status_code = 402
    retryable = False


class InvalidDonor(PaymentError):
    """Donor details unusable for receipts (e.g. malformed email)."""
    error_code = "INVALID_DONOR"
    status_code = 422


class ReconciliationRequired(PaymentError):
    """The gateway reports captured money the record cannot absorb (e.g. a capture on a failed order)."""
    error_code = "RECONCILIATION_REQUIRED"
    status_code = 409
