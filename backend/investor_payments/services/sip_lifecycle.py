"""
SIP Lifecycle — create, pause, resume and cancel recurring subscriptions.

Every mutating action follows the same contract:
  1. validate identifiers
  2. load the row by order id + account code (must carry a gateway subscription id)
  3. check the stored status against the transition table (no mutation on failure)
  4. call the gateway with the gateway's own subscription id
  5. write the target status with a versioned update
  6. return previous / new status and the gateway response
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from investor_payments.errors import GatewayError, NotFoundError, ValidationError
from investor_payments.models.transaction import PaymentTransaction, mask_tail
from investor_payments.schemas.schemas import SetupSipRequest
from investor_payments.services.audit_service import AuditService
from investor_payments.services.gateway_client import CashfreeClient
from investor_payments.services.order_service import generate_order_id, tpv_details
from investor_payments.services.status import (
    PaymentType, SipAction, SipStatus, ensure_transition, map_status, parse_action,
)
from investor_payments.services.transaction_store import TransactionStore
from investor_payments.utils.validators import (
    clean_phone, parse_date, sanitize_description, validate_ifsc, validate_phone,
)

logger = logging.getLogger("investor_payments.sip")

MIN_SIP_AMOUNT = 1
DEFAULT_PHONE = "9999999999"
OPEN_ENDED_YEARS = 10

# frequency → (gateway interval type, intervals per charge)
FREQUENCY_INTERVALS = {
    "daily": ("DAY", 1),
    "weekly": ("WEEK", 1),
    "monthly": ("MONTH", 1),
    "quarterly": ("MONTH", 3),
    "yearly": ("YEAR", 1),
    "custom": ("MONTH", 1),
}

# IFSC bank prefix → gateway bank code
BANK_CODES = {
    "ICIC": "ICIC",
    "HDFC": "HDFC",
    "SBIN": "SBI",
    "AXIS": "AXIS",
    "UTIB": "AXIS",
    "YESB": "YES",
    "INDB": "INDIAN",
    "KKBK": "KOTAK",
    "CITI": "CITI",
    "SCBL": "SC",
}

# Gateway error phrases meaning the subscription is already where we want it.
ALREADY_IN_STATE = {
    SipAction.PAUSE: ("already paused",),
    SipAction.ACTIVATE: ("already active", "already activated"),
    SipAction.CANCEL: ("already cancelled", "already canceled"),
}

_GATEWAY_CALLS = {
    SipAction.PAUSE: "pause_subscription",
    SipAction.ACTIVATE: "activate_subscription",
    SipAction.CANCEL: "cancel_subscription",
}


@dataclass
class LifecycleResult:
    order_id: str
    cf_subscription_id: Optional[str]
    action: SipAction
    previous_status: str
    new_status: str
    gateway_response: Dict[str, Any] = field(default_factory=dict)
    transaction: Optional[PaymentTransaction] = None

    def to_dict(self) -> Dict[str, Any]:
        txn = self.transaction
        return {
            "subscription_id": self.order_id,
            "cf_subscription_id": self.cf_subscription_id,
            "action": self.action.value,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "amount": float(txn.amount) if txn is not None and txn.amount is not None else None,
            "frequency": txn.frequency if txn is not None else None,
            "next_charge_date": txn.next_charge_date.isoformat() if txn is not None and txn.next_charge_date else None,
            "cancelled_at": txn.canceled_at.isoformat() if txn is not None and txn.canceled_at else None,
            "gateway_response": self.gateway_response,
        }


class SipLifecycleService:
    """State transitions for SIP subscriptions."""

    # ─── Create ──────────────────────────────────────────────────────

    @staticmethod
    def validate_setup(payload: SetupSipRequest) -> tuple[date, Optional[date]]:
        """Validate a setup request; returns the parsed (start, end) dates."""
        sip = payload.sip_details
        if not payload.order_amount or not payload.nuvama_code or not sip.frequency or not sip.start_date:
            raise ValidationError("Missing required fields: order_amount, nuvama_code, frequency, or start_date")

        if payload.order_amount < MIN_SIP_AMOUNT:
            raise ValidationError(f"Amount must be a number and minimum ₹{MIN_SIP_AMOUNT}")

        if sip.frequency.lower() not in FREQUENCY_INTERVALS:
            raise ValidationError(f"Invalid frequency. Must be one of: {', '.join(FREQUENCY_INTERVALS)}")

        try:
            start = parse_date(sip.start_date)
        except ValueError:
            raise ValidationError("Invalid start_date format. Use YYYY-MM-DD")
        try:
            end = parse_date(sip.end_date)
        except ValueError:
            raise ValidationError("Invalid end_date format. Use YYYY-MM-DD or omit for null")
        if end is not None and end <= start:
            raise ValidationError("end_date must be after start_date")

        missing = [name for name in ("client_name", "account_number", "ifsc_code") if not getattr(payload, name)]
        if missing:
            raise ValidationError(f"Missing required TPV fields: {', '.join(missing)}")
        if not validate_ifsc(payload.ifsc_code):
            raise ValidationError("Invalid IFSC code")

        if sip.total_installments is not None and sip.total_installments < 1:
            raise ValidationError("total_installments must be at least 1")

        return start, end

    @staticmethod
    def create_sip(
        db: Session,
        client: CashfreeClient,
        payload: SetupSipRequest,
        base_url: str,
    ) -> Dict[str, Any]:
        """Create a plan and a subscription at the gateway, then store the SIP row.

        The row is stored as INITIALIZED; the gateway's authorisation webhook
        (or a reconciliation sweep) moves it on from there.
        """
        start, end = SipLifecycleService.validate_setup(payload)
        sip = payload.sip_details
        frequency = sip.frequency.lower()
        amount = float(payload.order_amount)
        phone = clean_phone(payload.phone_number) if validate_phone(payload.phone_number) else DEFAULT_PHONE
        bank_code = BANK_CODES.get(payload.ifsc_code[:4].upper(), "ICIC")

        base_id = generate_order_id()
        subscription_id = f"SUB_{base_id}"
        plan_id = f"PLAN_{base_id}"
        interval_type, intervals = FREQUENCY_INTERVALS[frequency]

        plan_request = {
            "plan_id": plan_id,
            "plan_name": f"SIP_{payload.nuvama_code}_{int(time.time() * 1000)}",
            "plan_type": "PERIODIC",
            "plan_currency": "INR",
            "plan_recurring_amount": amount,
            "plan_max_amount": amount,
            "plan_intervals": intervals,
            "plan_interval_type": interval_type,
            "plan_note": sanitize_description(f"SIP_Plan_for_{payload.client_name}_{frequency}"),
        }
        if sip.total_installments:
            plan_request["plan_max_cycles"] = sip.total_installments

        plan = client.create_plan(plan_request)
        logger.info("Created plan %s for %s", plan.get("plan_id", plan_id), payload.nuvama_code)

        expiry = end or (date.today() + timedelta(days=365 * OPEN_ENDED_YEARS))
        return_base = payload.return_url or f"{base_url}/payment/sip-success"
        subscription_request = {
            "subscription_id": subscription_id,
            "customer_details": {
                "customer_name": payload.client_name,
                "customer_email": payload.customer_email or f"{payload.nuvama_code}@nuvama.com",
                "customer_phone": phone,
                "customer_bank_account_holder_name": payload.client_name,
                "customer_bank_account_number": payload.account_number,
                "customer_bank_ifsc": payload.ifsc_code,
                "customer_bank_code": bank_code,
                "customer_bank_account_type": "SAVINGS",
            },
            "plan_details": {"plan_id": plan_id},
            "authorization_details": {
                "authorization_amount": amount,
                "authorization_amount_refund": True,
                "payment_methods": ["enach", "pnach", "upi", "card"],
            },
            "subscription_meta": {
                "return_url": f"{return_base}?subscription_id={subscription_id}",
                "notification_channel": ["EMAIL", "SMS"],
            },
            "subscription_first_charge_time": f"{start.isoformat()}T00:00:00Z",
            "subscription_expiry_time": f"{expiry.isoformat()}T23:59:59Z",
            "subscription_note": sanitize_description(
                f"Nuvama_Code_{payload.nuvama_code}_SIP_Amount_{amount:.2f}"
            ),
            "subscription_tags": {
                "nuvama_code": payload.nuvama_code,
                "client_name": payload.client_name,
            },
        }

        subscription = client.create_subscription(subscription_request)

        payment_link = subscription.get("payment_link")
        if not payment_link:
            raise GatewayError("Failed to create subscription session - missing payment_link")
        gateway_status = str(subscription.get("subscription_status") or "").upper()
        if gateway_status not in ("INITIALIZED", "INITIALISED"):
            raise GatewayError(f"Subscription creation failed - status: {subscription.get('subscription_status')}")

        next_charge = None
        if subscription.get("next_schedule_date"):
            try:
                next_charge = parse_date(subscription["next_schedule_date"])
            except ValueError:
                logger.warning("Ignoring unparseable next_schedule_date %r", subscription["next_schedule_date"])

        txn = TransactionStore.create(
            db,
            order_id=subscription_id,
            client_id=payload.client_id,
            nuvama_code=payload.nuvama_code,
            client_name=payload.client_name,
            customer_email=subscription_request["customer_details"]["customer_email"],
            customer_phone=phone,
            amount=amount,
            currency="INR",
            payment_type=PaymentType.SIP.value,
            payment_status=SipStatus.INITIALIZED.value,
            payment_session_id=payment_link,
            cf_subscription_id=str(subscription["cf_subscription_id"]) if subscription.get("cf_subscription_id") else None,
            account_number=payload.account_number,
            ifsc_code=payload.ifsc_code,
            frequency=frequency,
            start_date=start,
            end_date=end,
            total_installments=sip.total_installments,
            next_charge_date=next_charge,
        )
        AuditService.log_action(db, subscription_id, "CREATE", None, txn.payment_status)
        logger.info(
            "Created SIP %s for %s (₹%.2f %s, bank %s)",
            subscription_id, payload.nuvama_code, amount, frequency, mask_tail(payload.account_number),
        )

        return {
            "order_id": subscription_id,
            "plan_id": plan.get("plan_id", plan_id),
            "subscription_id": subscription.get("subscription_id", subscription_id),
            "cf_subscription_id": txn.cf_subscription_id,
            "subscription_status": subscription.get("subscription_status"),
            "payment_status": txn.payment_status,
            "order_amount": amount,
            "order_currency": "INR",
            "checkout_url": payment_link,
            "customer_bank_code": bank_code,
            "subscription_first_charge_time": subscription.get("subscription_first_charge_time"),
            "subscription_expiry_time": subscription.get("subscription_expiry_time"),
            "sip_details": {
                "frequency": frequency,
                "start_date": start.isoformat(),
                "end_date": end.isoformat() if end else None,
                "total_installments": sip.total_installments,
                "next_charge_date": next_charge.isoformat() if next_charge else None,
            },
            "tpv_enabled": True,
            "tpv_details": tpv_details(
                payload.nuvama_code, payload.client_name, payload.account_number, payload.ifsc_code
            ),
        }

    @staticmethod
    def verify_subscription(client: CashfreeClient, subscription_id: str) -> Dict[str, Any]:
        """Summarise the gateway's current view of a subscription."""
        if not subscription_id:
            raise ValidationError("Subscription ID is required")
        data = client.fetch_subscription(subscription_id)
        plan = data.get("plan_details") or {}
        auth = data.get("authorisation_details") or data.get("authorization_details") or {}
        customer = data.get("customer_details") or {}
        return {
            "subscription_id": data.get("subscription_id"),
            "cf_subscription_id": data.get("cf_subscription_id"),
            "status": map_status(data.get("subscription_status"), PaymentType.SIP),
            "subscription_status": data.get("subscription_status"),
            "customer_details": {
                "customer_name": customer.get("customer_name"),
                "customer_email": customer.get("customer_email"),
                "customer_phone": mask_tail(customer.get("customer_phone")),
            },
            "plan_details": {
                "plan_name": plan.get("plan_name"),
                "plan_amount": plan.get("plan_recurring_amount") or plan.get("plan_amount"),
                "plan_currency": plan.get("plan_currency"),
                "plan_interval_type": plan.get("plan_interval_type"),
                "plan_intervals": plan.get("plan_intervals"),
            },
            "authorization_details": {
                "authorization_status": auth.get("authorization_status"),
                "authorization_time": auth.get("authorization_time"),
            },
            "subscription_first_charge_time": data.get("subscription_first_charge_time"),
            "subscription_expiry_time": data.get("subscription_expiry_time"),
            "next_schedule_date": data.get("next_schedule_date"),
            "error_code": data.get("error_code"),
            "error_reason": data.get("error_message"),
        }

    # ─── Transitions ─────────────────────────────────────────────────

    @staticmethod
    def _already_in_state(exc: GatewayError, action: SipAction) -> bool:
        message = (exc.message or "").lower()
        return any(phrase in message for phrase in ALREADY_IN_STATE[action])

    @staticmethod
    def manage_sip(
        db: Session,
        client: CashfreeClient,
        subscription_id: Optional[str],
        nuvama_code: Optional[str],
        action,
        reason: Optional[str] = None,
    ) -> LifecycleResult:
        """Apply PAUSE / ACTIVATE / CANCEL to a stored SIP.

        Raises:
            ValidationError: identifiers missing or action unknown.
            NotFoundError: no such SIP for this account, or it has no gateway id.
            InvalidTransitionError: action illegal for the stored status.
            GatewayError: remote call failed (other than "already in state").
        """
        if not subscription_id:
            raise ValidationError("subscription_id is required")
        if not nuvama_code:
            raise ValidationError("nuvama_code is required")
        sip_action = parse_action(action)

        txn = TransactionStore.get_by_order_and_account(db, subscription_id, nuvama_code, PaymentType.SIP)
        if txn is None:
            raise NotFoundError("SIP subscription not found or does not belong to this client")
        if not txn.cf_subscription_id:
            raise NotFoundError(
                "SIP subscription not properly linked: missing gateway subscription id. Please contact support."
            )

        previous_status = txn.payment_status
        target_status = ensure_transition(sip_action, previous_status)

        logger.info(
            "SIP %s: %s requested (current %s, gateway id %s)",
            subscription_id, sip_action.value, previous_status, txn.cf_subscription_id,
        )
        gateway_call = getattr(client, _GATEWAY_CALLS[sip_action])
        try:
            gateway_response = gateway_call(txn.cf_subscription_id)
        except GatewayError as exc:
            if not SipLifecycleService._already_in_state(exc, sip_action):
                raise
            logger.info("SIP %s already %s at gateway; updating local record only", subscription_id, target_status)
            gateway_response = {"status": target_status, "message": exc.message}

        txn = TransactionStore.update(
            db, txn,
            payment_status=target_status,
            last_gateway_event_at=datetime.utcnow(),
        )
        AuditService.log_action(db, subscription_id, sip_action.value, previous_status, target_status, reason=reason)

        return LifecycleResult(
            order_id=txn.order_id,
            cf_subscription_id=txn.cf_subscription_id,
            action=sip_action,
            previous_status=previous_status,
            new_status=target_status,
            gateway_response=gateway_response if isinstance(gateway_response, dict) else {"response": gateway_response},
            transaction=txn,
        )

    @staticmethod
    def pause_sip(db, client, subscription_id, nuvama_code, reason=None) -> LifecycleResult:
        return SipLifecycleService.manage_sip(db, client, subscription_id, nuvama_code, SipAction.PAUSE, reason)

    @staticmethod
    def resume_sip(db, client, subscription_id, nuvama_code, reason=None) -> LifecycleResult:
        return SipLifecycleService.manage_sip(db, client, subscription_id, nuvama_code, SipAction.ACTIVATE, reason)

    @staticmethod
    def cancel_sip(db, client, subscription_id, nuvama_code, reason=None) -> LifecycleResult:
        return SipLifecycleService.manage_sip(db, client, subscription_id, nuvama_code, SipAction.CANCEL, reason)
