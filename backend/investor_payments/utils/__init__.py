from investor_payments.utils.hashing import compute_webhook_signature, verify_webhook_signature
from investor_payments.utils.validators import (
    validate_phone, validate_email, validate_ifsc, parse_date, parse_timestamp,
)

__all__ = [
    "compute_webhook_signature", "verify_webhook_signature",
    "validate_phone", "validate_email", "validate_ifsc", "parse_date", "parse_timestamp",
]
