"""
Payment Transaction Model — one row per one-time order or SIP subscription.
Maps to the 'payment_transactions' table.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Date, JSON, Boolean, Numeric

from investor_payments.database import Base


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    order_id = Column(String(64), unique=True, nullable=False, index=True)

    client_id = Column(String(64))
    nuvama_code = Column(String(32), nullable=False, index=True)
    client_name = Column(String(128))
    customer_email = Column(String(128))
    customer_phone = Column(String(16))

    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), default="INR")

    payment_type = Column(String(16), nullable=False)   # ONE_TIME | SIP | NEW_STRATEGY
    payment_status = Column(String(32), nullable=False)
    # Orders: CREATED → ACTIVE → PAID | FAILED | EXPIRED | CANCELLED
    # SIPs:   INITIALIZED → PENDING/BANK_APPROVAL_PENDING → ACTIVE ⇄ PAUSED → CANCELLED | EXPIRED | COMPLETED

    # Gateway identifiers (null until the create call succeeds)
    payment_session_id = Column(String(512))
    cf_order_id = Column(String(64), index=True)
    cf_subscription_id = Column(String(64), index=True)
    cf_payment_id = Column(String(64))

    # TPV bank account
    account_number = Column(String(32))
    ifsc_code = Column(String(11))

    # SIP schedule
    frequency = Column(String(16))
    start_date = Column(Date)
    end_date = Column(Date)
    total_installments = Column(Integer)
    next_charge_date = Column(Date)

    # Latest payment attempt
    payment_time = Column(DateTime)
    bank_reference = Column(String(64))
    payment_method = Column(JSON)
    payment_message = Column(String(512))
    auth_id = Column(String(64))

    is_new_strategy = Column(Boolean, default=False)
    strategy_type = Column(String(64))

    last_gateway_event_at = Column(DateTime)
    synced_at = Column(DateTime)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
    canceled_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "client_id": self.client_id,
            "nuvama_code": self.nuvama_code,
            "client_name": self.client_name,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "payment_type": self.payment_type,
            "payment_status": self.payment_status,
            "payment_session_id": self.payment_session_id,
            "cf_order_id": self.cf_order_id,
            "cf_subscription_id": self.cf_subscription_id,
            "cf_payment_id": self.cf_payment_id,
            "account_number": mask_tail(self.account_number),
            "ifsc_code": self.ifsc_code,
            "frequency": self.frequency,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "total_installments": self.total_installments,
            "next_charge_date": _iso(self.next_charge_date),
            "payment_time": _iso(self.payment_time),
            "is_new_strategy": bool(self.is_new_strategy),
            "strategy_type": self.strategy_type,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "canceled_at": _iso(self.canceled_at),
            "synced_at": _iso(self.synced_at),
        }


def mask_tail(value: str | None, visible: int = 4) -> str | None:
    """Mask everything but the last `visible` characters (account / phone numbers)."""
    if not value:
        return value
    return f"***{value[-visible:]}"


def _iso(value):
    return value.isoformat() if value else None
