"""
Status Vocabulary — gateway → stored status mapping and the SIP transition table.

Cashfree reports order and subscription states in its own vocabulary; the
portal stores a slightly different one. `map_status` is the only place the
two meet, and `ensure_transition` is the only place an action is checked
against the stored status.
"""
from enum import Enum
from typing import Dict, FrozenSet

from investor_payments.errors import InvalidTransitionError, ValidationError


class PaymentType(str, Enum):
    ONE_TIME = "ONE_TIME"
    SIP = "SIP"
    NEW_STRATEGY = "NEW_STRATEGY"


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class SipStatus(str, Enum):
    INITIALIZED = "INITIALIZED"
    PENDING = "PENDING"
    BANK_APPROVAL_PENDING = "BANK_APPROVAL_PENDING"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    PAUSED = "PAUSED"
    CUSTOMER_PAUSED = "CUSTOMER_PAUSED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class SipAction(str, Enum):
    PAUSE = "PAUSE"
    ACTIVATE = "ACTIVATE"
    CANCEL = "CANCEL"


ORDER_STATUS_MAP: Dict[str, str] = {
    "SUCCESS": OrderStatus.PAID.value,
    "FAILED": OrderStatus.FAILED.value,
    "PENDING": OrderStatus.ACTIVE.value,
    "ACTIVE": OrderStatus.ACTIVE.value,
    "CREATED": OrderStatus.ACTIVE.value,
    "EXPIRED": OrderStatus.EXPIRED.value,
    "CANCELLED": OrderStatus.CANCELLED.value,
    "TERMINATED": OrderStatus.CANCELLED.value,
}

# Paused / pending variants keep their own spelling: the portal shows a
# different message for a customer-initiated pause than for a bank hold.
SIP_STATUS_MAP: Dict[str, str] = {
    "ACTIVE": SipStatus.ACTIVE.value,
    "INITIALISED": SipStatus.PENDING.value,
    "INITIALIZED": SipStatus.PENDING.value,
    "BANK_APPROVAL_PENDING": SipStatus.BANK_APPROVAL_PENDING.value,
    "PENDING": SipStatus.PENDING.value,
    "ON_HOLD": SipStatus.ON_HOLD.value,
    "PAUSED": SipStatus.PAUSED.value,
    "CUSTOMER_PAUSED": SipStatus.CUSTOMER_PAUSED.value,
    "COMPLETED": SipStatus.COMPLETED.value,
    "CUSTOMER_CANCELLED": SipStatus.CANCELLED.value,
    "CANCELLED": SipStatus.CANCELLED.value,
    "EXPIRED": SipStatus.EXPIRED.value,
    "LINK_EXPIRED": SipStatus.EXPIRED.value,
    "FAILED": SipStatus.FAILED.value,
}

TERMINAL_SIP_STATUSES: FrozenSet[str] = frozenset({
    SipStatus.CANCELLED.value,
    SipStatus.EXPIRED.value,
    SipStatus.COMPLETED.value,
})

TERMINAL_ORDER_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.PAID.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.EXPIRED.value,
})

# Statuses that stamp `canceled_at` the first time a row enters them.
CANCELLATION_STATUSES: FrozenSet[str] = frozenset({"CANCELLED", "EXPIRED"})

# action → (legal source statuses, resulting status). A source set of None
# means "any status that is not terminal".
SIP_TRANSITIONS: Dict[SipAction, tuple] = {
    SipAction.PAUSE: (frozenset({SipStatus.ACTIVE.value}), SipStatus.PAUSED.value),
    SipAction.ACTIVATE: (
        frozenset({SipStatus.PAUSED.value, SipStatus.CUSTOMER_PAUSED.value}),
        SipStatus.ACTIVE.value,
    ),
    SipAction.CANCEL: (None, SipStatus.CANCELLED.value),
}


def _normalize(raw) -> str:
    raw = getattr(raw, "value", raw)
    if raw is None:
        return ""
    return str(raw).strip().upper()


def is_sip(payment_type) -> bool:
    return _normalize(payment_type) == PaymentType.SIP.value


def map_status(raw_status, payment_type) -> str:
    """Translate a gateway status into the stored vocabulary.

    Never raises. Input is matched case-insensitively; anything the tables do
    not know is passed through (upper-cased for orders, as received for SIPs).
    `NEW_STRATEGY` payments use the one-time order vocabulary.
    """
    key = _normalize(raw_status)
    if is_sip(payment_type):
        if key in SIP_STATUS_MAP:
            return SIP_STATUS_MAP[key]
        raw_status = getattr(raw_status, "value", raw_status)
        return "" if raw_status is None else str(raw_status).strip()
    return ORDER_STATUS_MAP.get(key, key)


def is_terminal(status, payment_type) -> bool:
    terminal = TERMINAL_SIP_STATUSES if is_sip(payment_type) else TERMINAL_ORDER_STATUSES
    return _normalize(status) in terminal


def parse_action(action) -> SipAction:
    """Accepts CANCEL/PAUSE/ACTIVATE in any case, plus 'resume' as ACTIVATE."""
    if isinstance(action, SipAction):
        return action
    key = _normalize(action)
    if key == "RESUME":
        key = SipAction.ACTIVATE.value
    try:
        return SipAction(key)
    except ValueError:
        valid = ", ".join(a.value for a in SipAction)
        raise ValidationError(f"Invalid action. Must be one of: {valid}")


def ensure_transition(action: SipAction, current_status) -> str:
    """Check `action` against the stored status; returns the target status.

    Raises:
        InvalidTransitionError: if the current status is not a legal source.
    """
    sources, target = SIP_TRANSITIONS[action]
    current = _normalize(current_status)
    if sources is None:
        allowed = current not in TERMINAL_SIP_STATUSES
    else:
        allowed = current in sources
    if not allowed:
        raise InvalidTransitionError(action.value, current_status or "UNKNOWN")
    return target


# Rows the reconciliation sweep treats as still in flight ("pending" filter).
OPEN_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.CREATED.value,
    OrderStatus.ACTIVE.value,
    SipStatus.INITIALIZED.value,
    SipStatus.PENDING.value,
    SipStatus.BANK_APPROVAL_PENDING.value,
    SipStatus.ON_HOLD.value,
    SipStatus.PAUSED.value,
    SipStatus.CUSTOMER_PAUSED.value,
})
