from investor_payments.services.gateway_client import CashfreeClient
from investor_payments.services.order_service import OrderService
from investor_payments.services.sip_lifecycle import SipLifecycleService
from investor_payments.services.webhook_service import WebhookService
from investor_payments.services.reconciliation import ReconciliationService
from investor_payments.services.audit_service import AuditService
from investor_payments.services.notification_service import NotificationService

__all__ = [
    "CashfreeClient", "OrderService", "SipLifecycleService", "WebhookService",
    "ReconciliationService", "AuditService", "NotificationService",
]
