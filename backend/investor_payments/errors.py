"""
Domain Errors — one exception per failure category.

Every error carries the HTTP status and error code the API layer renders it
with, so services raise and routes never translate by hand.
"""
from typing import Optional


class PaymentServiceError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ValidationError(PaymentServiceError):
    status_code = 400
    error_code = "VALIDATION_FAILED"


class NotFoundError(PaymentServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class InvalidTransitionError(PaymentServiceError):
    status_code = 409
    error_code = "INVALID_TRANSITION"

    def __init__(self, action: str, current_status: str):
        super().__init__(
            f"Cannot {action.lower()} SIP. Current status: {current_status}"
        )
        self.action = action
        self.current_status = current_status


class ConcurrentModificationError(PaymentServiceError):
    status_code = 409
    error_code = "CONCURRENT_MODIFICATION"


class GatewayConfigError(PaymentServiceError):
    status_code = 500
    error_code = "GATEWAY_NOT_CONFIGURED"


class GatewayError(PaymentServiceError):
    """Remote call to the payment gateway failed."""

    status_code = 502
    error_code = "GATEWAY_ERROR"

    def __init__(self, message: str, gateway_status: Optional[int] = None, body=None):
        super().__init__(message)
        self.gateway_status = gateway_status
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.gateway_status == 404

    @property
    def is_transient(self) -> bool:
        return self.gateway_status is None or self.gateway_status == 429 or self.gateway_status >= 500


class SignatureError(PaymentServiceError):
    status_code = 403
    error_code = "INVALID_SIGNATURE"


class MissingSignatureError(SignatureError):
    status_code = 400
    error_code = "MISSING_SIGNATURE"
