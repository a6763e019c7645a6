"""
Audit Service — records every SIP action in the sip_action_logs trail.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from investor_payments.models.action_log import SipActionLog

logger = logging.getLogger("investor_payments.audit")


class AuditService:
    """Append-only SIP action history."""

    @staticmethod
    def log_action(
        db: Session,
        subscription_id: str,
        action: str,
        status_before: Optional[str],
        status_after: Optional[str],
        reason: Optional[str] = None,
        source: str = "API",
    ) -> Optional[SipActionLog]:
        """Create an action log entry.

        The action it describes has already been committed, so a failure here
        is logged and swallowed rather than reported to the caller.

        Args:
            db: Database session.
            subscription_id: Application order id of the SIP.
            action: CREATE, PAUSE, ACTIVATE, CANCEL or STATUS_SYNC.
            status_before: Stored status before the action.
            status_after: Stored status after the action.
            reason: Optional free-text reason supplied by the client.
            source: API, WEBHOOK or SYNC.

        Returns:
            The created SipActionLog entry, or None if it could not be written.
        """
        entry = SipActionLog(
            subscription_id=subscription_id,
            action=action,
            reason=reason,
            source=source,
            status_before=status_before,
            status_after=status_after,
            performed_at=datetime.utcnow(),
        )
        try:
            db.add(entry)
            db.commit()
            db.refresh(entry)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Failed to log SIP action %s for %s: %s", action, subscription_id, exc)
            return None
        return entry

    @staticmethod
    def history(db: Session, subscription_id: str) -> list[SipActionLog]:
        """Full action history for a subscription, oldest first."""
        return (
            db.query(SipActionLog)
            .filter(SipActionLog.subscription_id == subscription_id)
            .order_by(SipActionLog.performed_at.asc(), SipActionLog.id.asc())
            .all()
        )
