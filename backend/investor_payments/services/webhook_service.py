"""
Webhook Service — verifies and applies Cashfree payment/subscription callbacks.

The raw body is verified before it is parsed; an unverified payload is never
acted upon. Once the row is written the webhook is acknowledged even if the
operator e-mail fails, otherwise the gateway keeps redelivering it.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from investor_payments.config import Settings, get_settings
from investor_payments.errors import (
    GatewayConfigError, MissingSignatureError, NotFoundError, SignatureError, ValidationError,
)
from investor_payments.services.audit_service import AuditService
from investor_payments.services.notification_service import NotificationService
from investor_payments.services.status import is_sip
from investor_payments.services.transaction_store import GatewayView, TransactionStore
from investor_payments.utils.hashing import verify_webhook_signature
from investor_payments.utils.validators import parse_date, parse_timestamp

logger = logging.getLogger("investor_payments.webhook")

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"

PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
PAYMENT_FAILED = "PAYMENT_FAILED"
PAYMENT_USER_DROPPED = "PAYMENT_USER_DROPPED"
ORDER_PAID = "ORDER_PAID"
SUBSCRIPTION_STATUS_CHANGED = "SUBSCRIPTION_STATUS_CHANGED"

# Raw status implied by the event type when the payload carries none.
EVENT_STATUS = {
    PAYMENT_SUCCESS: "SUCCESS",
    PAYMENT_FAILED: "FAILED",
    PAYMENT_USER_DROPPED: "USER_DROPPED",
    ORDER_PAID: "PAID",
}

NOTIFY_EVENTS = frozenset({PAYMENT_SUCCESS, PAYMENT_FAILED})


def normalize_event_type(raw) -> str:
    """PAYMENT_SUCCESS_WEBHOOK → PAYMENT_SUCCESS; unknown types pass through."""
    event_type = str(raw or "").strip().upper()
    if event_type.endswith("_WEBHOOK"):
        event_type = event_type[: -len("_WEBHOOK")]
    return event_type


def _data(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data")
    return data if isinstance(data, dict) else {}


def _section(event: Dict[str, Any], name: str) -> Dict[str, Any]:
    """A payload section, read from the top level or from under `data`."""
    value = event.get(name)
    if not isinstance(value, dict):
        value = _data(event).get(name)
    return value if isinstance(value, dict) else {}


def resolve_order_id(event: Dict[str, Any]) -> Optional[str]:
    data = _data(event)
    candidates = (
        _section(event, "order").get("order_id"),
        _section(event, "subscription_details").get("subscription_id"),
        data.get("subscription_id"),
    )
    for candidate in candidates:
        if candidate:
            return str(candidate)
    return None


def _optional_str(value) -> Optional[str]:
    return None if value in (None, "") else str(value)


class WebhookService:
    """Verification and application of gateway webhooks."""

    @staticmethod
    def verify(raw_body: Union[str, bytes], signature: Optional[str], timestamp: Optional[str], settings: Settings):
        """
        Raises:
            MissingSignatureError: signature or timestamp header absent.
            SignatureError: signature does not match the body.
        """
        if not signature or not timestamp:
            raise MissingSignatureError("Missing webhook signature or timestamp")
        secret = settings.webhook_secret
        if not secret:
            raise GatewayConfigError("Webhook secret not configured")
        if not verify_webhook_signature(secret, timestamp, raw_body, signature):
            logger.warning("Rejected webhook with invalid signature (timestamp %s)", timestamp)
            raise SignatureError("Invalid webhook signature")

    @staticmethod
    def send_alert(alert: Dict[str, Any]) -> bool:
        """Send the operator e-mail for a payment event; failures are logged, not raised."""
        order_id = (alert.get("order") or {}).get("order_id")
        try:
            return NotificationService.send_payment_alert(alert)
        except Exception as exc:
            logger.warning("Payment alert for %s failed: %s", order_id, exc)
            return False

    @staticmethod
    def build_view(event: Dict[str, Any], event_type: str, payment_type, header_timestamp=None) -> GatewayView:
        """Translate a webhook payload into the gateway's view of one row."""
        order = _section(event, "order")
        payment = _section(event, "payment")
        subscription = _section(event, "subscription_details")
        sip_row = is_sip(payment_type)

        raw_status = None
        updates_status = True
        if subscription.get("subscription_status"):
            raw_status = subscription["subscription_status"]
        elif payment.get("payment_status"):
            raw_status = payment["payment_status"]
            # A single instalment's outcome is not the subscription's status.
            updates_status = not sip_row
        elif order.get("order_status"):
            raw_status = order["order_status"]
        elif event_type in EVENT_STATUS:
            raw_status = EVENT_STATUS[event_type]
            updates_status = not sip_row

        next_charge = None
        if subscription.get("next_schedule_date"):
            try:
                next_charge = parse_date(subscription["next_schedule_date"])
            except ValueError:
                logger.warning("Ignoring unparseable next_schedule_date %r", subscription["next_schedule_date"])

        payment_method = payment.get("payment_method")
        event_time = (
            parse_timestamp(payment.get("payment_time"))
            or parse_timestamp(event.get("event_time"))
            or parse_timestamp(header_timestamp)
        )

        return GatewayView(
            raw_status=raw_status,
            updates_status=updates_status,
            cf_order_id=_optional_str(order.get("cf_order_id")),
            cf_subscription_id=_optional_str(subscription.get("cf_subscription_id")),
            cf_payment_id=_optional_str(payment.get("cf_payment_id")),
            payment_time=parse_timestamp(payment.get("payment_time")),
            bank_reference=_optional_str(payment.get("bank_reference")),
            payment_method=payment_method if isinstance(payment_method, dict) else None,
            payment_message=_optional_str(payment.get("payment_message")),
            auth_id=_optional_str(payment.get("auth_id")),
            next_charge_date=next_charge,
            event_time=event_time,
        )

    @staticmethod
    def process(
        db: Session,
        raw_body: Union[str, bytes],
        signature: Optional[str],
        timestamp: Optional[str],
        settings: Optional[Settings] = None,
        notify: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ) -> Dict[str, Any]:
        """Verify, parse and apply one webhook delivery.

        Returns the acknowledgment body. Raises before any write if the
        signature is bad, the payload is malformed, or the order is unknown.
        `notify` receives the payment alert; by default it is sent inline.
        """
        settings = settings or get_settings()
        notify = notify or WebhookService.send_alert
        WebhookService.verify(raw_body, signature, timestamp, settings)

        if isinstance(raw_body, bytes):
            try:
                raw_body = raw_body.decode("utf-8")
            except UnicodeDecodeError:
                raise ValidationError("Invalid webhook payload")
        try:
            event = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict):
            raise ValidationError("Invalid webhook payload")
        if event.get("data") is not None and not isinstance(event["data"], dict):
            raise ValidationError("Invalid webhook payload")

        event_type = normalize_event_type(event.get("type"))
        order_id = resolve_order_id(event)
        if not order_id:
            raise ValidationError("Webhook payload carries no order or subscription id")

        txn = TransactionStore.get_by_order_id(db, order_id)
        if txn is None:
            logger.warning("Webhook %s for unknown order %s", event_type, order_id)
            raise NotFoundError(f"Order {order_id} not found")

        if event_type not in EVENT_STATUS and event_type != SUBSCRIPTION_STATUS_CHANGED:
            logger.info("Unrecognised webhook type %r for %s; applying generic update", event_type, order_id)

        view = WebhookService.build_view(event, event_type, txn.payment_type, header_timestamp=timestamp)
        previous_status = txn.payment_status
        stale = TransactionStore.is_stale(txn, view)
        changes = TransactionStore.apply_gateway_view(db, txn, view)

        if "payment_status" in changes:
            logger.info("Webhook %s: %s %s → %s", event_type, order_id, previous_status, txn.payment_status)
            if is_sip(txn.payment_type):
                AuditService.log_action(
                    db, order_id, "STATUS_SYNC", previous_status, txn.payment_status, source="WEBHOOK",
                )

        if stale and changes:
            logger.info("Webhook %s: recorded payment details for %s without a status change", event_type, order_id)

        if event_type in NOTIFY_EVENTS:
            alert = {
                "order": _section(event, "order") or {"order_id": order_id},
                "payment": _section(event, "payment"),
                "customer_details": _section(event, "customer_details"),
                "data": {"order": _section(event, "order")},
            }
            try:
                notify(alert)
            except Exception as exc:
                logger.warning("Payment alert for %s failed: %s", order_id, exc)

        return {
            "success": True,
            "order_id": order_id,
            "event_type": event_type,
            "status_updated": not stale,
            "payment_status": txn.payment_status,
        }
