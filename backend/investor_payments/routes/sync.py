"""
Sync Routes — on-demand reconciliation of an account against the gateway.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from investor_payments.config import Settings, get_settings
from investor_payments.database import get_db
from investor_payments.errors import ValidationError
from investor_payments.schemas.schemas import SyncResponse, SyncResults
from investor_payments.services.gateway_client import CashfreeClient, get_gateway_client
from investor_payments.services.reconciliation import ReconciliationService
from investor_payments.utils.rate_limiter import rate_limit

router = APIRouter(prefix="/api", tags=["Sync"])

_settings = get_settings()


@router.get("/sync-client-orders", response_model=SyncResponse)
def sync_client_orders(
    nuvama_code: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="all | pending | unsync"),
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_settings),
    _throttle: bool = Depends(rate_limit(
        requests=_settings.SYNC_RATE_LIMIT_REQUESTS,
        window=_settings.SYNC_RATE_LIMIT_WINDOW,
        scope="sync",
    )),
):
    """Re-read every matching row from the gateway and fix any drift."""
    if not nuvama_code:
        raise ValidationError("nuvama_code is required")

    report = ReconciliationService.sync_account(
        db, client, nuvama_code, status_filter=status, delay=settings.SYNC_DELAY_SECONDS,
    )
    return SyncResponse(
        message=f"Sync completed for client {nuvama_code}",
        client_code=nuvama_code,
        results=SyncResults(**report.to_dict()),
        timestamp=datetime.utcnow(),
    )
