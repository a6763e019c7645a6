import json
import time
from datetime import datetime, timedelta

import pytest

from investor_payments.config import get_settings
from investor_payments.errors import MissingSignatureError, NotFoundError, SignatureError, ValidationError
from investor_payments.models.action_log import SipActionLog
from investor_payments.services.sip_lifecycle import SipLifecycleService
from investor_payments.services.transaction_store import TransactionStore
from investor_payments.services.webhook_service import WebhookService, normalize_event_type
from investor_payments.utils.hashing import compute_webhook_signature

SECRET = "test-webhook-secret"


def _signed(event, timestamp=None):
    body = json.dumps(event)
    timestamp = timestamp or str(int(time.time()))
    return body, compute_webhook_signature(SECRET, timestamp, body), timestamp


def _payment_event(order_id, event_type="PAYMENT_SUCCESS_WEBHOOK", status="SUCCESS", payment_time=None):
    return {
        "type": event_type,
        "data": {
            "order": {"order_id": order_id, "order_amount": 2500, "order_currency": "INR"},
            "payment": {
                "cf_payment_id": 99001,
                "payment_status": status,
                "payment_time": payment_time or "2025-01-05T10:15:00+05:30",
                "bank_reference": "BR123",
                "payment_method": {"upi": {"upi_id": "asha@okbank"}},
            },
            "customer_details": {"customer_name": "Asha Rao"},
        },
    }


def _process(db, event, notify=None, **kwargs):
    body, signature, timestamp = _signed(event, **kwargs)
    return WebhookService.process(
        db, body, signature, timestamp, settings=get_settings(), notify=notify or (lambda alert: None),
    )


def test_event_type_normalisation():
    assert normalize_event_type("PAYMENT_SUCCESS_WEBHOOK") == "PAYMENT_SUCCESS"
    assert normalize_event_type("order_paid") == "ORDER_PAID"
    assert normalize_event_type(None) == ""


def test_missing_headers_are_rejected(db, make_order):
    txn = make_order()
    body, signature, _ = _signed(_payment_event(txn.order_id))

    with pytest.raises(MissingSignatureError):
        WebhookService.process(db, body, signature, None, settings=get_settings())


def test_bad_signature_is_rejected_without_writing(db, make_order):
    txn = make_order()
    body, _, timestamp = _signed(_payment_event(txn.order_id))

    with pytest.raises(SignatureError):
        WebhookService.process(db, body, "bm90LWEtc2lnbmF0dXJl", timestamp, settings=get_settings())

    db.expire_all()
    assert TransactionStore.get_by_order_id(db, txn.order_id).payment_status == "ACTIVE"


def test_signature_covers_the_exact_body(db, make_order):
    txn = make_order()
    body, signature, timestamp = _signed(_payment_event(txn.order_id))
    tampered = body.replace("SUCCESS", "FAILED")

    with pytest.raises(SignatureError):
        WebhookService.process(db, tampered, signature, timestamp, settings=get_settings())


def test_payment_success_updates_order(db, make_order):
    txn = make_order()
    alerts = []

    ack = _process(db, _payment_event(txn.order_id), notify=alerts.append)

    assert ack == {
        "success": True,
        "order_id": txn.order_id,
        "event_type": "PAYMENT_SUCCESS",
        "status_updated": True,
        "payment_status": "PAID",
    }
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.cf_payment_id == "99001"
    assert stored.bank_reference == "BR123"
    assert stored.payment_method == {"upi": {"upi_id": "asha@okbank"}}
    assert stored.payment_time == datetime(2025, 1, 5, 4, 45)
    assert len(alerts) == 1
    assert alerts[0]["payment"]["payment_status"] == "SUCCESS"


def test_unrecognised_type_still_updates(db, make_order):
    txn = make_order()

    ack = _process(db, _payment_event(txn.order_id, event_type="PAYMENT_SOMETHING_NEW"))

    assert ack["status_updated"] is True
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.payment_status == "PAID"
    assert stored.cf_payment_id == "99001"


def test_status_derived_from_type_when_payload_has_none(db, make_order):
    txn = make_order()
    event = {"type": "PAYMENT_USER_DROPPED_WEBHOOK", "data": {"order": {"order_id": txn.order_id}}}

    ack = _process(db, event)

    assert ack["payment_status"] == "USER_DROPPED"


def test_notification_failure_does_not_fail_webhook(db, make_order):
    txn = make_order()

    def broken_notify(alert):
        raise OSError("smtp down")

    ack = _process(db, _payment_event(txn.order_id, event_type="PAYMENT_FAILED_WEBHOOK", status="FAILED"),
                   notify=broken_notify)

    assert ack["success"] is True
    assert ack["payment_status"] == "FAILED"


def test_stale_event_records_payment_without_changing_status(db, make_order):
    txn = make_order()
    TransactionStore.update(db, txn, last_gateway_event_at=datetime(2025, 1, 6))

    ack = _process(db, _payment_event(txn.order_id, status="FAILED", payment_time="2025-01-05T10:00:00Z"))

    assert ack["status_updated"] is False
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.payment_status == "ACTIVE"
    assert stored.cf_payment_id == "99001"
    assert stored.last_gateway_event_at == datetime(2025, 1, 6)


def test_payment_after_local_pause_is_recorded_and_alerted(db, cashfree, gateway, make_sip):
    txn = make_sip(status="ACTIVE")
    gateway.add("POST", f"/subscriptions/{txn.cf_subscription_id}/manage", {})
    SipLifecycleService.pause_sip(db, cashfree, txn.order_id, "NUV123")
    paid_at = (datetime.utcnow() - timedelta(seconds=30)).strftime("%Y-%m-%dT%H:%M:%SZ")
    alerts = []

    ack = _process(db, _payment_event(txn.order_id, payment_time=paid_at), notify=alerts.append)

    assert ack["payment_status"] == "PAUSED"
    assert len(alerts) == 1
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert (stored.cf_payment_id, stored.bank_reference) == ("99001", "BR123")
    assert stored.payment_status == "PAUSED"


def test_payment_older_than_last_sync_is_still_recorded(db, make_order):
    txn = make_order()
    TransactionStore.update(db, txn, last_gateway_event_at=datetime.utcnow())
    paid_at = (datetime.utcnow() - timedelta(minutes=2)).strftime("%Y-%m-%dT%H:%M:%SZ")
    alerts = []

    _process(db, _payment_event(txn.order_id, payment_time=paid_at), notify=alerts.append)

    assert len(alerts) == 1
    db.expire_all()
    assert TransactionStore.get_by_order_id(db, txn.order_id).cf_payment_id == "99001"


def test_non_object_data_is_a_validation_error(db, make_order):
    make_order()
    with pytest.raises(ValidationError):
        _process(db, {"type": "PAYMENT_SUCCESS_WEBHOOK", "data": "oops"})


def test_undecodable_body_is_a_validation_error(db):
    body = b"\xff\xfe{}"
    timestamp = str(int(time.time()))
    signature = compute_webhook_signature(SECRET, timestamp, body)

    with pytest.raises(ValidationError):
        WebhookService.process(db, body, signature, timestamp, settings=get_settings(), notify=lambda alert: None)


def test_send_alert_swallows_mail_errors(mocker):
    mocker.patch(
        "investor_payments.services.webhook_service.NotificationService.send_payment_alert",
        side_effect=OSError("smtp down"),
    )

    assert WebhookService.send_alert({"order": {"order_id": "qode_1"}, "payment": {}}) is False


def test_newer_event_wins(db, make_order):
    txn = make_order()
    _process(db, _payment_event(txn.order_id, status="FAILED", payment_time="2025-01-05T10:00:00Z"))
    _process(db, _payment_event(txn.order_id, status="SUCCESS", payment_time="2025-01-05T10:05:00Z"))
    _process(db, _payment_event(txn.order_id, status="FAILED", payment_time="2025-01-05T10:01:00Z"))

    db.expire_all()
    assert TransactionStore.get_by_order_id(db, txn.order_id).payment_status == "PAID"


def test_subscription_status_event_updates_sip(db, make_sip):
    txn = make_sip(status="INITIALIZED")
    event = {
        "type": "SUBSCRIPTION_STATUS_CHANGED",
        "data": {
            "subscription_details": {
                "subscription_id": txn.order_id,
                "cf_subscription_id": txn.cf_subscription_id,
                "subscription_status": "ACTIVE",
                "next_schedule_date": "2025-02-01",
            },
        },
    }

    ack = _process(db, event)

    assert ack["payment_status"] == "ACTIVE"
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.next_charge_date.isoformat() == "2025-02-01"
    entry = db.query(SipActionLog).filter_by(subscription_id=txn.order_id).one()
    assert (entry.source, entry.status_after) == ("WEBHOOK", "ACTIVE")


def test_instalment_payment_does_not_replace_sip_status(db, make_sip):
    txn = make_sip(status="ACTIVE")

    ack = _process(db, _payment_event(txn.order_id, status="FAILED"))

    assert ack["payment_status"] == "ACTIVE"
    db.expire_all()
    assert TransactionStore.get_by_order_id(db, txn.order_id).cf_payment_id == "99001"


def test_unknown_order_is_not_found(db):
    with pytest.raises(NotFoundError):
        _process(db, _payment_event("qode_missing"))


def test_cancellation_via_webhook_stamps_canceled_at(db, make_sip):
    txn = make_sip(status="ACTIVE")
    event = {"type": "SUBSCRIPTION_STATUS_CHANGED",
             "data": {"subscription_details": {"subscription_id": txn.order_id,
                                               "subscription_status": "CUSTOMER_CANCELLED"}}}
    now = datetime.utcnow()

    _process(db, event, timestamp=str(int(time.time() * 1000)))

    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.payment_status == "CANCELLED"
    assert stored.canceled_at is not None
    assert stored.canceled_at >= now - timedelta(seconds=1)
