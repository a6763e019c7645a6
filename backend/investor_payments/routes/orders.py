"""
Order Routes — one-time investment orders and payment lookups.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from investor_payments.config import Settings, get_settings
from investor_payments.database import get_db
from investor_payments.errors import NotFoundError, ValidationError
from investor_payments.schemas.schemas import CreateOrderRequest
from investor_payments.services.gateway_client import CashfreeClient, get_gateway_client
from investor_payments.services.order_service import OrderService, tpv_details
from investor_payments.services.transaction_store import TransactionStore

logger = logging.getLogger("investor_payments.routes.orders")

router = APIRouter(prefix="/api/cashfree", tags=["Orders"])


@router.post("/create-order")
def create_order(
    payload: CreateOrderRequest,
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_settings),
):
    """Create a TPV-restricted gateway order and return its checkout session."""
    txn, cf_order = OrderService.create_order(db, client, payload, settings.PUBLIC_BASE_URL)
    return {
        "success": True,
        "order_id": txn.order_id,
        "cf_order_id": txn.cf_order_id,
        "payment_session_id": txn.payment_session_id,
        "order_status": cf_order.get("order_status"),
        "payment_status": txn.payment_status,
        "order_amount": float(txn.amount),
        "order_currency": txn.currency,
        "payment_type": txn.payment_type,
        "is_new_strategy": bool(txn.is_new_strategy),
        "strategy_type": txn.strategy_type,
        "tpv_enabled": True,
        "tpv_details": tpv_details(txn.nuvama_code, txn.client_name, payload.account_number, txn.ifsc_code),
        "timestamp": datetime.utcnow(),
    }


@router.get("/create-order")
def get_order(
    order_id: Optional[str] = Query(None),
    client: CashfreeClient = Depends(get_gateway_client),
):
    """Gateway passthrough: the order as Cashfree currently sees it."""
    order = OrderService.fetch_order(client, order_id)
    return {"success": True, "order": order}


@router.get("/payment-details")
def payment_details(
    order_id: Optional[str] = Query(None, description="Application order id, gateway order id or subscription id"),
    db: Session = Depends(get_db),
):
    """Look a payment up by any known identifier, falling back to a fuzzy match."""
    if not order_id:
        raise ValidationError("Order ID is required")

    txn = TransactionStore.get_by_any_id(db, order_id)
    if txn is None:
        recent = [t.order_id for t in TransactionStore.recent(db, limit=10)]
        logger.info("Payment details not found for %s; recent orders: %s", order_id, recent)
        raise NotFoundError("Payment details not found")

    return {"success": True, "payment": txn.to_dict()}
