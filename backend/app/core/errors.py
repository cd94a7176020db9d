# core/errors.py
"""
Error taxonomy for the payment core.

Merchant-facing paths (initiate, query, manual reminders) raise these and the
API turns them into typed JSON errors. Gateway-facing callback paths catch
everything except InvalidSignature and still acknowledge the gateway.
"""
from typing import Optional


class PaymentError(Exception):
    status_code = 400
    code = "payment_error"
    retryable = False

    def __init__(self, message: str, *, gateway: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.gateway = gateway
        self.field = field

    def to_dict(self) -> dict:
        body = {
            "status": "rejected",
            "code": self.code,
            "errorMessage": self.message,
            "retryable": self.retryable,
        }
        if self.gateway:
            body["gateway"] = self.gateway
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(PaymentError):
    code = "validation_error"


class InvalidPhoneNumber(ValidationError):
    code = "invalid_phone_number"

    def __init__(self, phone: str, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid phone number '{phone}'. Must be 12 digits starting with the country code",
            field="phone",
        )
        self.phone = phone


class NotFound(PaymentError):
    status_code = 404
    code = "not_found"


class GatewayNotConfigured(PaymentError):
    status_code = 409
    code = "gateway_not_configured"


class InvalidCredentials(PaymentError):
    status_code = 409
    code = "invalid_credentials"


class GatewayError(PaymentError):
    """The gateway answered but refused the request."""
    status_code = 422
    code = "gateway_error"


class GatewayTransientError(PaymentError):
    """Network failure, timeout or 5xx from the provider. Safe to retry."""
    status_code = 503
    code = "gateway_unavailable"
    retryable = True


class QueryNotSupported(PaymentError):
    code = "query_not_supported"


class InvalidSignature(PaymentError):
    code = "invalid_signature"


class ReconciliationConflict(PaymentError):
    """Lost the conditional status write to a concurrent delivery."""
    status_code = 409
    code = "reconciliation_conflict"


class SideEffectFailure(PaymentError):
    status_code = 500
    code = "side_effect_failure"
