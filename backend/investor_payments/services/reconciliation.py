"""
Reconciliation Service — pulls the gateway's state for an account's rows.

Rows are processed one at a time with a fixed pause between gateway calls.
A failure on one row is recorded and the sweep moves on to the next.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from investor_payments.errors import GatewayError, PaymentServiceError, ValidationError
from investor_payments.models.transaction import PaymentTransaction
from investor_payments.services.audit_service import AuditService
from investor_payments.services.gateway_client import CashfreeClient
from investor_payments.services.status import is_sip
from investor_payments.services.transaction_store import GatewayView, TransactionStore
from investor_payments.utils.validators import parse_date, parse_timestamp

logger = logging.getLogger("investor_payments.reconciliation")


@dataclass
class SyncReport:
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    not_found: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _optional_str(value) -> Optional[str]:
    return None if value in (None, "") else str(value)


def _latest_payment(payments: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not payments:
        return None
    return max(payments, key=lambda p: parse_timestamp(p.get("payment_time")) or datetime.min)


class ReconciliationService:
    """On-demand pull of gateway state for one account."""

    @staticmethod
    def fetch_view(client: CashfreeClient, txn: PaymentTransaction) -> GatewayView:
        """The gateway's current view of `txn` (one or two remote calls)."""
        now = datetime.utcnow()
        if is_sip(txn.payment_type):
            data = client.fetch_subscription(txn.cf_subscription_id or txn.order_id)
            next_charge = None
            if data.get("next_schedule_date"):
                try:
                    next_charge = parse_date(data["next_schedule_date"])
                except ValueError:
                    logger.warning("Ignoring unparseable next_schedule_date for %s", txn.order_id)
            return GatewayView(
                raw_status=data.get("subscription_status"),
                cf_subscription_id=_optional_str(data.get("cf_subscription_id")),
                next_charge_date=next_charge,
                event_time=now,
            )

        order = client.fetch_order(txn.order_id)
        payment = _latest_payment(client.fetch_order_payments(txn.order_id)) or {}
        payment_method = payment.get("payment_method")
        return GatewayView(
            raw_status=payment.get("payment_status") or order.get("order_status"),
            cf_order_id=_optional_str(order.get("cf_order_id")),
            payment_session_id=_optional_str(order.get("payment_session_id")),
            cf_payment_id=_optional_str(payment.get("cf_payment_id")),
            payment_time=parse_timestamp(payment.get("payment_time")),
            bank_reference=_optional_str(payment.get("bank_reference")),
            payment_method=payment_method if isinstance(payment_method, dict) else None,
            payment_message=_optional_str(payment.get("payment_message")),
            auth_id=_optional_str(payment.get("auth_id")),
            event_time=now,
        )

    @staticmethod
    def sync_row(db: Session, client: CashfreeClient, txn: PaymentTransaction) -> bool:
        """Reconcile one row; returns True if anything was written besides synced_at."""
        view = ReconciliationService.fetch_view(client, txn)
        needs_update = bool(TransactionStore.diff_gateway_view(txn, view, correct_schedule=True))
        if not needs_update and not TransactionStore.missing_gateway_id(txn):
            TransactionStore.mark_synced(db, txn)
            return False

        previous_status = txn.payment_status
        changes = TransactionStore.apply_gateway_view(db, txn, view, correct_schedule=True, mark_synced=True)
        if "payment_status" in changes:
            logger.info("Sync %s: %s → %s", txn.order_id, previous_status, txn.payment_status)
            if is_sip(txn.payment_type):
                AuditService.log_action(
                    db, txn.order_id, "STATUS_SYNC", previous_status, txn.payment_status, source="SYNC",
                )
        return True

    @staticmethod
    def sync_account(
        db: Session,
        client: CashfreeClient,
        nuvama_code: str,
        status_filter: Optional[str] = None,
        delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> SyncReport:
        """Reconcile every matching row for an account.

        Raises:
            ValidationError: missing account code or unknown status filter.
        """
        if not nuvama_code:
            raise ValidationError("nuvama_code is required")

        rows = TransactionStore.list_for_account(db, nuvama_code, status_filter=status_filter)
        report = SyncReport(total=len(rows))
        logger.info("Syncing %d transactions for %s (filter=%s)", len(rows), nuvama_code, status_filter or "all")

        for index, txn in enumerate(rows):
            if index > 0 and delay > 0:
                sleep(delay)
            order_id = txn.order_id
            try:
                if ReconciliationService.sync_row(db, client, txn):
                    report.updated += 1
                else:
                    report.unchanged += 1
            except GatewayError as exc:
                if exc.is_not_found:
                    logger.info("Sync %s: not found at gateway", order_id)
                    report.not_found += 1
                    continue
                logger.error("Sync %s failed: %s", order_id, exc.message)
                report.failed += 1
                report.errors.append({"order_id": order_id, "error": exc.message})
            except (PaymentServiceError, SQLAlchemyError) as exc:
                db.rollback()
                message = getattr(exc, "message", None) or str(exc)
                logger.error("Sync %s failed: %s", order_id, message)
                report.failed += 1
                report.errors.append({"order_id": order_id, "error": message})

        logger.info(
            "Sync completed for %s: %d updated, %d unchanged, %d failed, %d not found",
            nuvama_code, report.updated, report.unchanged, report.failed, report.not_found,
        )
        return report
