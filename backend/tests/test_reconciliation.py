from datetime import date

import httpx
import pytest

from investor_payments.errors import ValidationError
from investor_payments.services.reconciliation import ReconciliationService
from investor_payments.services.transaction_store import TransactionStore


def _order_paid(gateway, order_id, cf_payment_id):
    gateway.add("GET", f"/orders/{order_id}", {"order_id": order_id, "order_status": "PAID"})
    gateway.add("GET", f"/orders/{order_id}/payments", [
        {"cf_payment_id": cf_payment_id - 1, "payment_status": "FAILED", "payment_time": "2025-01-05T10:00:00Z"},
        {"cf_payment_id": cf_payment_id, "payment_status": "SUCCESS", "payment_time": "2025-01-05T10:05:00Z"},
    ])


def test_one_unreachable_row_does_not_stop_the_sweep(db, cashfree, gateway, make_order):
    rows = [make_order(), make_order(), make_order()]
    _order_paid(gateway, rows[0].order_id, 501)
    gateway.fail("GET", f"/orders/{rows[1].order_id}", httpx.ConnectError("connection reset"))
    _order_paid(gateway, rows[2].order_id, 503)

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert report.total == 3
    assert report.updated == 2
    assert report.failed == 1
    assert report.errors[0]["order_id"] == rows[1].order_id
    db.expire_all()
    for txn, payment_id in ((rows[0], "501"), (rows[2], "503")):
        stored = TransactionStore.get_by_order_id(db, txn.order_id)
        assert stored.payment_status == "PAID"
        assert stored.cf_payment_id == payment_id
        assert stored.synced_at is not None
    assert TransactionStore.get_by_order_id(db, rows[1].order_id).payment_status == "ACTIVE"


def test_gateway_404_counts_as_not_found(db, cashfree, make_order):
    make_order()

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert (report.not_found, report.failed, report.errors) == (1, 0, [])


def test_unchanged_row_is_marked_synced(db, cashfree, gateway, make_sip):
    txn = make_sip(status="ACTIVE", next_charge_date=date(2025, 2, 1))
    gateway.add("GET", f"/subscriptions/{txn.cf_subscription_id}", {
        "subscription_status": "ACTIVE",
        "cf_subscription_id": txn.cf_subscription_id,
        "next_schedule_date": "2025-02-01",
    })

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert (report.updated, report.unchanged) == (0, 1)
    db.expire_all()
    assert TransactionStore.get_by_order_id(db, txn.order_id).synced_at is not None


def test_unchanged_row_keeps_version_and_updated_at(db, cashfree, gateway, make_order):
    txn = make_order(status="PAID", cf_payment_id="99001")
    before = (txn.version, txn.updated_at)
    gateway.add("GET", f"/orders/{txn.order_id}", {
        "order_status": "PAID", "cf_order_id": txn.cf_order_id,
    })
    gateway.add("GET", f"/orders/{txn.order_id}/payments", [])

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert report.unchanged == 1
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert (stored.version, stored.updated_at) == before
    assert stored.synced_at is not None


def test_sweep_may_move_next_charge_date_back(db, cashfree, gateway, make_sip):
    txn = make_sip(status="PAUSED", next_charge_date=date(2025, 3, 1))
    gateway.add("GET", f"/subscriptions/{txn.cf_subscription_id}", {
        "subscription_status": "ACTIVE",
        "next_schedule_date": "2025-02-01",
    })

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert report.updated == 1
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.payment_status == "ACTIVE"
    assert stored.next_charge_date == date(2025, 2, 1)


def test_sip_without_gateway_id_is_fetched_by_order_id(db, cashfree, gateway, make_sip):
    txn = make_sip(status="INITIALIZED", cf_subscription_id=None)
    gateway.add("GET", f"/subscriptions/{txn.order_id}", {
        "subscription_status": "INITIALIZED",
        "cf_subscription_id": 4455,
    })

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0)

    assert report.updated == 1
    db.expire_all()
    stored = TransactionStore.get_by_order_id(db, txn.order_id)
    assert stored.cf_subscription_id == "4455"
    assert stored.payment_status == "PENDING"


def test_pending_filter_skips_settled_rows(db, cashfree, gateway, make_order):
    open_row = make_order(status="ACTIVE")
    make_order(status="PAID")
    _order_paid(gateway, open_row.order_id, 700)

    report = ReconciliationService.sync_account(db, cashfree, "NUV123", status_filter="pending", delay=0)

    assert report.total == 1
    assert [r.url.path for r in gateway.requests][0].endswith(open_row.order_id)


def test_delay_between_rows(db, cashfree, gateway, make_order):
    rows = [make_order(), make_order()]
    for i, txn in enumerate(rows):
        _order_paid(gateway, txn.order_id, 800 + i * 10)
    pauses = []

    ReconciliationService.sync_account(db, cashfree, "NUV123", delay=0.2, sleep=pauses.append)

    assert pauses == [0.2]


def test_unknown_filter_is_rejected(db, cashfree):
    with pytest.raises(ValidationError):
        ReconciliationService.sync_account(db, cashfree, "NUV123", status_filter="everything")
