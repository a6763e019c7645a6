"""
Webhook Signature Utilities — HMAC-SHA256 signing of gateway callbacks.
"""
import base64
import hashlib
import hmac


def compute_webhook_signature(secret: str, timestamp: str, raw_body: str | bytes) -> str:
    """Base64 HMAC-SHA256 over `timestamp + raw_body`, as Cashfree signs webhooks.

    The body is signed as received; bytes are never decoded here.
    """
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    message = str(timestamp).encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(secret: str, timestamp: str, raw_body: str | bytes, signature: str) -> bool:
    """Constant-time comparison of the received signature against the expected one."""
    if not secret or not signature:
        return False
    expected = compute_webhook_signature(secret, timestamp, raw_body)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))
