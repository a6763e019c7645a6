"""
SIP Routes — setup, verification and lifecycle management of recurring investments.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from investor_payments.config import Settings, get_settings
from investor_payments.database import get_db
from investor_payments.errors import NotFoundError, ValidationError
from investor_payments.schemas.schemas import (
    CancelSipRequest, ManageSipRequest, PauseResumeSipRequest, SetupSipRequest,
    SipActionLogEntry, SipActionResponse,
)
from investor_payments.services.audit_service import AuditService
from investor_payments.services.gateway_client import CashfreeClient, get_gateway_client
from investor_payments.services.sip_lifecycle import LifecycleResult, SipLifecycleService
from investor_payments.services.status import PaymentType, SipAction
from investor_payments.services.transaction_store import TransactionStore

router = APIRouter(prefix="/api", tags=["SIP"])

_ACTION_MESSAGES = {
    SipAction.PAUSE: "SIP paused successfully",
    SipAction.ACTIVATE: "SIP resumed successfully",
    SipAction.CANCEL: "SIP cancelled successfully",
}


def _action_response(result: LifecycleResult) -> SipActionResponse:
    return SipActionResponse(
        message=_ACTION_MESSAGES[result.action],
        data=result.to_dict(),
        timestamp=datetime.utcnow(),
    )


# ─── Setup ───────────────────────────────────────────────────────────

@router.post("/cashfree/setup-sip")
def setup_sip(
    payload: SetupSipRequest,
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
    settings: Settings = Depends(get_settings),
):
    """Create a plan + subscription and return the mandate authorisation link."""
    created = SipLifecycleService.create_sip(db, client, payload, settings.PUBLIC_BASE_URL)
    return {"success": True, **created, "timestamp": datetime.utcnow()}


@router.get("/cashfree/setup-sip")
def verify_sip(
    subscription_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    client: CashfreeClient = Depends(get_gateway_client),
):
    if not subscription_id:
        raise ValidationError("Subscription ID is required")
    if action != "verify":
        raise ValidationError("Invalid action. Use action=verify")
    return {"success": True, "subscription": SipLifecycleService.verify_subscription(client, subscription_id)}


# ─── Lifecycle ───────────────────────────────────────────────────────

@router.post("/cashfree/manage-sip", response_model=SipActionResponse)
def manage_sip(
    payload: ManageSipRequest,
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
):
    """Apply CANCEL, PAUSE or ACTIVATE to a client's SIP."""
    result = SipLifecycleService.manage_sip(
        db, client, payload.subscription_id, payload.nuvama_code, payload.action, payload.reason,
    )
    return _action_response(result)


@router.get("/cashfree/manage-sip")
def list_sips(
    subscription_id: Optional[str] = Query(None),
    nuvama_code: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """One SIP by id, or every SIP for an account."""
    if subscription_id:
        txn = TransactionStore.get_by_order_id(db, subscription_id)
        if txn is None or txn.payment_type != PaymentType.SIP.value:
            raise NotFoundError("SIP not found")
        return {"success": True, "sip": txn.to_dict()}

    if nuvama_code:
        rows = TransactionStore.list_for_account(db, nuvama_code, payment_type=PaymentType.SIP)
        return {"success": True, "sips": [txn.to_dict() for txn in rows], "count": len(rows)}

    raise ValidationError("Either subscription_id or nuvama_code is required")


@router.get("/cashfree/manage-sip/history", response_model=List[SipActionLogEntry])
def sip_history(
    subscription_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    if not subscription_id:
        raise ValidationError("subscription_id is required")
    return AuditService.history(db, subscription_id)


@router.post("/cancel-sip", response_model=SipActionResponse)
def cancel_sip(
    payload: CancelSipRequest,
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
):
    result = SipLifecycleService.cancel_sip(
        db, client, payload.subscription_id, payload.nuvama_code, payload.reason,
    )
    return _action_response(result)


@router.post("/pause-resume-sip", response_model=SipActionResponse)
def pause_resume_sip(
    payload: PauseResumeSipRequest,
    db: Session = Depends(get_db),
    client: CashfreeClient = Depends(get_gateway_client),
):
    """Pause an active SIP or resume a paused one."""
    if not payload.subscription_id:
        raise ValidationError("subscription_id is required")
    if not payload.nuvama_code:
        raise ValidationError("nuvama_code is required")

    action = (payload.action or "").lower()
    if action == "pause":
        result = SipLifecycleService.pause_sip(
            db, client, payload.subscription_id, payload.nuvama_code, payload.reason,
        )
    elif action == "resume":
        result = SipLifecycleService.resume_sip(
            db, client, payload.subscription_id, payload.nuvama_code, payload.reason,
        )
    else:
        raise ValidationError('action must be either "pause" or "resume"')
    return _action_response(result)
