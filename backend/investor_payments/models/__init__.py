from investor_payments.models.transaction import PaymentTransaction
from investor_payments.models.action_log import SipActionLog

__all__ = ["PaymentTransaction", "SipActionLog"]
