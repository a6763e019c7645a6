"""
Order Service — one-time (and new-strategy) investment orders via Cashfree PG.
"""
import logging
import time
import uuid
from typing import Any, Dict, Tuple

from sqlalchemy.orm import Session

from investor_payments.errors import ValidationError
from investor_payments.models.transaction import PaymentTransaction, mask_tail
from investor_payments.schemas.schemas import CreateOrderRequest
from investor_payments.services.gateway_client import CashfreeClient
from investor_payments.services.status import OrderStatus, PaymentType, map_status
from investor_payments.services.transaction_store import TransactionStore
from investor_payments.utils.validators import clean_phone, validate_email, validate_ifsc

logger = logging.getLogger("investor_payments.orders")

MIN_ORDER_AMOUNT = 100


def generate_order_id() -> str:
    """qode_<epoch-ms>_<6 hex chars>"""
    return f"qode_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def tpv_details(nuvama_code: str, client_name: str, account_number: str, ifsc_code: str) -> Dict[str, Any]:
    return {
        "nuvama_code": nuvama_code,
        "client_name": client_name,
        "account_number_masked": mask_tail(account_number),
        "ifsc_code": ifsc_code,
        "tpv_enabled": True,
    }


class OrderService:
    """Creates and inspects one-time payment orders."""

    REQUIRED_FIELDS = (
        "amount", "customer_name", "customer_email", "customer_phone",
        "nuvama_code", "client_id", "account_number", "ifsc_code",
    )

    @staticmethod
    def validate(payload: CreateOrderRequest) -> str:
        """Validate an order request; returns the cleaned phone number.

        Raises:
            ValidationError: listing every missing field, or the first bad value.
        """
        missing = [name for name in OrderService.REQUIRED_FIELDS if not getattr(payload, name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        if payload.amount < MIN_ORDER_AMOUNT:
            raise ValidationError(f"Minimum amount is ₹{MIN_ORDER_AMOUNT}")

        phone = clean_phone(payload.customer_phone)
        if len(phone) != 10:
            raise ValidationError("Invalid phone number. Must be a 10-digit number.")

        if not validate_email(payload.customer_email):
            raise ValidationError("Invalid email format")

        if not validate_ifsc(payload.ifsc_code):
            raise ValidationError("Invalid IFSC code")

        return phone

    @staticmethod
    def create_order(
        db: Session,
        client: CashfreeClient,
        payload: CreateOrderRequest,
        base_url: str,
    ) -> Tuple[PaymentTransaction, Dict[str, Any]]:
        """Create a gateway order with TPV bank details and store it.

        Nothing is stored if the gateway call fails.

        Returns:
            (stored transaction, raw gateway order).
        """
        phone = OrderService.validate(payload)
        order_id = generate_order_id()
        payment_type = PaymentType.NEW_STRATEGY if payload.is_new_strategy else PaymentType.ONE_TIME

        customer_details = {
            "customer_id": payload.client_id,
            "customer_name": payload.customer_name,
            "customer_email": payload.customer_email,
            "customer_phone": phone,
            "customer_bank_account_number": payload.account_number,
            "customer_bank_ifsc": payload.ifsc_code,
        }
        if payload.cashfree_bank_code:
            customer_details["customer_bank_code"] = payload.cashfree_bank_code

        order_data = {
            "order_id": order_id,
            "order_amount": payload.amount,
            "order_currency": payload.currency or "INR",
            "customer_details": customer_details,
            "order_meta": {
                "return_url": payload.return_url or f"{base_url}/payment/success?order_id={order_id}",
                "notify_url": f"{base_url}/api/cashfree/webhook",
            },
            "order_note": (
                f"Investment - Account ID: {payload.nuvama_code}, "
                f"Client: {payload.customer_name}, Amount: ₹{payload.amount:.2f}"
            ),
            "order_tags": {
                "nuvama_code": payload.nuvama_code,
                "client_id": payload.client_id,
                "order_type": payment_type.value.lower(),
                "source": "qode_investor_portal",
                "tpv_enabled": "true",
                "account_number_last4": payload.account_number[-4:],
                "ifsc_code": payload.ifsc_code,
            },
        }
        if payload.strategy_type:
            order_data["order_tags"]["strategy_type"] = payload.strategy_type

        cf_order = client.create_order(order_data)

        raw_status = cf_order.get("order_status")
        txn = TransactionStore.create(
            db,
            order_id=cf_order.get("order_id") or order_id,
            client_id=payload.client_id,
            nuvama_code=payload.nuvama_code,
            client_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=phone,
            amount=payload.amount,
            currency=payload.currency or "INR",
            payment_type=payment_type.value,
            payment_status=map_status(raw_status, payment_type) if raw_status else OrderStatus.CREATED.value,
            payment_session_id=cf_order.get("payment_session_id"),
            cf_order_id=str(cf_order["cf_order_id"]) if cf_order.get("cf_order_id") else None,
            account_number=payload.account_number,
            ifsc_code=payload.ifsc_code,
            is_new_strategy=payload.is_new_strategy,
            strategy_type=payload.strategy_type,
        )
        logger.info(
            "Created %s order %s for %s (₹%.2f)",
            payment_type.value, txn.order_id, payload.nuvama_code, payload.amount,
        )
        return txn, cf_order

    @staticmethod
    def fetch_order(client: CashfreeClient, order_id: str) -> Dict[str, Any]:
        if not order_id:
            raise ValidationError("Order ID is required")
        return client.fetch_order(order_id)
