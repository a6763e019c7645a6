"""
Transaction Store — reads and versioned writes of payment_transactions rows.

Every write is a compare-and-swap on the row's `version` column, so two
requests racing on the same order cannot silently overwrite each other.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import literal, or_, update
from sqlalchemy.orm import Session

from investor_payments.errors import ConcurrentModificationError, NotFoundError, ValidationError
from investor_payments.models.transaction import PaymentTransaction
from investor_payments.services.status import (
    CANCELLATION_STATUSES, OPEN_STATUSES, PaymentType, is_sip, map_status,
)

logger = logging.getLogger("investor_payments.store")

SYNC_FILTERS = (None, "all", "pending", "unsync")

_GATEWAY_FIELDS = (
    "cf_order_id",
    "cf_subscription_id",
    "payment_session_id",
    "cf_payment_id",
    "payment_time",
    "bank_reference",
    "payment_method",
    "payment_message",
    "auth_id",
)

# Fields only an event at least as new as the last applied one may change.
_ORDERED_FIELDS = ("payment_status", "next_charge_date")


@dataclass
class GatewayView:
    """The gateway's current picture of one order or subscription.

    Built from a webhook payload or from a fetch during reconciliation; fields
    left as None are unknown and never overwrite stored values.
    """

    raw_status: Optional[str] = None
    updates_status: bool = True
    cf_order_id: Optional[str] = None
    cf_subscription_id: Optional[str] = None
    payment_session_id: Optional[str] = None
    cf_payment_id: Optional[str] = None
    payment_time: Optional[datetime] = None
    bank_reference: Optional[str] = None
    payment_method: Optional[Dict[str, Any]] = None
    payment_message: Optional[str] = None
    auth_id: Optional[str] = None
    next_charge_date: Optional[date] = None
    event_time: Optional[datetime] = None


class TransactionStore:
    """Query and update helpers for PaymentTransaction rows."""

    # ─── Reads ───────────────────────────────────────────────────────

    @staticmethod
    def get_by_order_id(db: Session, order_id: str) -> Optional[PaymentTransaction]:
        return db.query(PaymentTransaction).filter(PaymentTransaction.order_id == order_id).first()

    @staticmethod
    def get_by_order_and_account(
        db: Session,
        order_id: str,
        nuvama_code: str,
        payment_type: Optional[PaymentType] = None,
    ) -> Optional[PaymentTransaction]:
        query = db.query(PaymentTransaction).filter(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.nuvama_code == nuvama_code,
        )
        if payment_type:
            query = query.filter(PaymentTransaction.payment_type == payment_type.value)
        return query.first()

    @staticmethod
    def get_by_any_id(db: Session, identifier: str) -> Optional[PaymentTransaction]:
        """Exact match on any known identifier, then a fuzzy LIKE search."""
        exact = (
            db.query(PaymentTransaction)
            .filter(or_(
                PaymentTransaction.order_id == identifier,
                PaymentTransaction.cf_order_id == identifier,
                PaymentTransaction.cf_subscription_id == identifier,
            ))
            .order_by(PaymentTransaction.created_at.desc())
            .first()
        )
        if exact:
            return exact

        pattern = f"%{identifier}%"
        needle = literal(identifier)
        return (
            db.query(PaymentTransaction)
            .filter(or_(
                PaymentTransaction.order_id.like(pattern),
                PaymentTransaction.cf_order_id.like(pattern),
                PaymentTransaction.cf_subscription_id.like(pattern),
                needle.like("%" + PaymentTransaction.order_id + "%"),
                needle.like("%" + PaymentTransaction.cf_order_id + "%"),
            ))
            .order_by(PaymentTransaction.created_at.desc())
            .first()
        )

    @staticmethod
    def recent(db: Session, limit: int = 10) -> List[PaymentTransaction]:
        return (
            db.query(PaymentTransaction)
            .order_by(PaymentTransaction.created_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_for_account(
        db: Session,
        nuvama_code: str,
        payment_type: Optional[PaymentType] = None,
        status_filter: Optional[str] = None,
    ) -> List[PaymentTransaction]:
        """All rows for an account, newest first.

        status_filter: None/'all' for every row, 'pending' for rows still in
        flight, 'unsync' for rows never reconciled or missing a payment id.
        """
        if status_filter not in SYNC_FILTERS:
            raise ValidationError("status must be one of: all, pending, unsync")

        query = db.query(PaymentTransaction).filter(PaymentTransaction.nuvama_code == nuvama_code)
        if payment_type:
            query = query.filter(PaymentTransaction.payment_type == payment_type.value)
        if status_filter == "pending":
            query = query.filter(PaymentTransaction.payment_status.in_(sorted(OPEN_STATUSES)))
        elif status_filter == "unsync":
            query = query.filter(or_(
                PaymentTransaction.synced_at.is_(None),
                PaymentTransaction.cf_payment_id.is_(None),
            ))
        return query.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()).all()

    # ─── Writes ──────────────────────────────────────────────────────

    @staticmethod
    def create(db: Session, **fields) -> PaymentTransaction:
        now = datetime.utcnow()
        txn = PaymentTransaction(created_at=now, updated_at=now, version=1, **fields)
        db.add(txn)
        db.commit()
        db.refresh(txn)
        logger.info("Stored %s transaction %s (%s)", txn.payment_type, txn.order_id, txn.payment_status)
        return txn

    @staticmethod
    def update(db: Session, txn: PaymentTransaction, **fields) -> PaymentTransaction:
        """Write `fields` if the row is still at the version that was read.

        `canceled_at` is stamped the first time the row enters CANCELLED or
        EXPIRED and is never rewritten afterwards.

        Raises:
            ConcurrentModificationError: the row changed since it was read.
            NotFoundError: the row no longer exists.
        """
        now = datetime.utcnow()
        expected_version = txn.version
        values = dict(fields)
        values["updated_at"] = now
        values["version"] = expected_version + 1

        if txn.canceled_at is not None:
            values.pop("canceled_at", None)
        elif values.get("payment_status") in CANCELLATION_STATUSES:
            values.setdefault("canceled_at", now)

        result = db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == txn.id,
                PaymentTransaction.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            still_there = db.query(PaymentTransaction.id).filter(PaymentTransaction.id == txn.id).first()
            if still_there is None:
                raise NotFoundError(f"Transaction {txn.order_id} no longer exists")
            raise ConcurrentModificationError(
                f"Transaction {txn.order_id} was modified by another request; retry the operation"
            )

        db.commit()
        db.refresh(txn)
        return txn

    @staticmethod
    def mark_synced(db: Session, txn: PaymentTransaction) -> PaymentTransaction:
        """Stamp synced_at only; updated_at and version are left as they are."""
        db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == txn.id)
            .values(synced_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(txn)
        return txn

    # ─── Gateway reconciliation ──────────────────────────────────────

    @staticmethod
    def diff_gateway_view(
        txn: PaymentTransaction,
        view: GatewayView,
        correct_schedule: bool = False,
    ) -> Dict[str, Any]:
        """Fields of `txn` that differ from the gateway's view.

        Webhooks only move next_charge_date forward; a reconciliation pull
        (`correct_schedule=True`) may also move it back.
        """
        changes: Dict[str, Any] = {}

        if view.updates_status and view.raw_status:
            status = map_status(view.raw_status, txn.payment_type)
            if status and status != txn.payment_status:
                changes["payment_status"] = status

        for field in _GATEWAY_FIELDS:
            value = getattr(view, field)
            if value is not None and value != getattr(txn, field):
                changes[field] = value

        incoming = view.next_charge_date
        if incoming is not None and incoming != txn.next_charge_date:
            if correct_schedule or txn.next_charge_date is None or incoming > txn.next_charge_date:
                changes["next_charge_date"] = incoming

        return changes

    @staticmethod
    def is_stale(txn: PaymentTransaction, view: GatewayView) -> bool:
        """True when the row already reflects a newer gateway event."""
        return (
            view.event_time is not None
            and txn.last_gateway_event_at is not None
            and view.event_time < txn.last_gateway_event_at
        )

    @staticmethod
    def missing_gateway_id(txn: PaymentTransaction) -> bool:
        if is_sip(txn.payment_type):
            return not txn.cf_subscription_id
        return not txn.cf_order_id

    @classmethod
    def apply_gateway_view(
        cls,
        db: Session,
        txn: PaymentTransaction,
        view: GatewayView,
        correct_schedule: bool = False,
        mark_synced: bool = False,
    ) -> Dict[str, Any]:
        """Write the gateway's view onto the row; returns the changed fields.

        A stale view (older than the last applied gateway event) still records
        ids and payment metadata, but leaves the status, the schedule and
        `last_gateway_event_at` alone.
        """
        changes = cls.diff_gateway_view(txn, view, correct_schedule=correct_schedule)
        fields = dict(changes)

        if cls.is_stale(txn, view):
            logger.info(
                "Stale gateway view for %s (event %s < last %s); keeping status %s",
                txn.order_id, view.event_time, txn.last_gateway_event_at, txn.payment_status,
            )
            for field in _ORDERED_FIELDS:
                changes.pop(field, None)
                fields.pop(field, None)
        elif view.event_time is not None:
            fields["last_gateway_event_at"] = view.event_time

        if mark_synced:
            fields["synced_at"] = datetime.utcnow()
        if not fields:
            return changes

        cls.update(db, txn, **fields)
        return changes
