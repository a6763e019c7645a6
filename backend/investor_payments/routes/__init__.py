from investor_payments.routes.orders import router as orders_router
from investor_payments.routes.sip import router as sip_router
from investor_payments.routes.webhook import router as webhook_router
from investor_payments.routes.sync import router as sync_router

__all__ = ["orders_router", "sip_router", "webhook_router", "sync_router"]
