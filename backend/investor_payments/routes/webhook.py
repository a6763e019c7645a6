"""
Webhook Routes — Cashfree payment and subscription callbacks.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from investor_payments.config import Settings, get_settings
from investor_payments.database import get_db
from investor_payments.schemas.schemas import WebhookAck
from investor_payments.services.webhook_service import WebhookService

router = APIRouter(prefix="/api/cashfree", tags=["Webhook"])


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_webhook_signature: Optional[str] = Header(None),
    x_webhook_timestamp: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify the signature over the exact bytes received, then apply the event.

    The database work runs in the threadpool and the operator e-mail is sent
    after the acknowledgment has gone out.
    """
    raw_body = await request.body()
    return await run_in_threadpool(
        WebhookService.process,
        db,
        raw_body,
        x_webhook_signature,
        x_webhook_timestamp,
        settings=settings,
        notify=lambda alert: background_tasks.add_task(WebhookService.send_alert, alert),
    )


@router.get("/webhook")
def webhook_challenge(challenge: Optional[str] = Query(None)):
    """Endpoint check used when the webhook URL is registered."""
    if challenge:
        return {"challenge": challenge}
    return {"success": True, "message": "Webhook endpoint is active"}
