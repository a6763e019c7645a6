from datetime import date, datetime

import pytest

from investor_payments.config import get_settings
from investor_payments.services.notification_service import NotificationService
from investor_payments.utils.hashing import compute_webhook_signature, verify_webhook_signature
from investor_payments.utils.validators import (
    parse_date, parse_timestamp, sanitize_description, validate_email, validate_ifsc, validate_phone,
)


def test_signature_matches_known_vector():
    # base64(HMAC-SHA256("secret", "1700000000" + '{"a":1}'))
    signature = compute_webhook_signature("secret", "1700000000", '{"a":1}')
    assert verify_webhook_signature("secret", "1700000000", b'{"a":1}', signature)
    assert not verify_webhook_signature("other", "1700000000", '{"a":1}', signature)
    assert not verify_webhook_signature("secret", "1700000001", '{"a":1}', signature)


def test_phone_and_email_validation():
    assert validate_phone("+91 98765-43210") is False
    assert validate_phone("98765-43210")
    assert validate_email("asha@example.com")
    assert not validate_email("asha@example")


def test_ifsc_validation():
    assert validate_ifsc("hdfc0001234")
    assert not validate_ifsc("HDFC1001234")


def test_sanitize_description():
    assert sanitize_description("SIP Plan for Asha (monthly)") == "SIPPlanforAshamonthly"


def test_parse_date():
    assert parse_date("2025-01-01") == date(2025, 1, 1)
    assert parse_date("") is None
    with pytest.raises(ValueError):
        parse_date("2025-13-01")


@pytest.mark.parametrize("value, expected", [
    ("2025-01-05T10:15:00+05:30", datetime(2025, 1, 5, 4, 45)),
    ("2025-01-05T10:15:00Z", datetime(2025, 1, 5, 10, 15)),
    ("1736072100", datetime(2025, 1, 5, 10, 15)),
    (1736072100000, datetime(2025, 1, 5, 10, 15)),
    ("yesterday", None),
])
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected


def test_payment_alert_content():
    subject, body = NotificationService.build_payment_alert({
        "order": {"order_id": "qode_1", "order_amount": 2500},
        "payment": {"payment_status": "FAILED", "payment_message": "Insufficient funds"},
        "customer_details": {"customer_name": "Asha Rao"},
        "data": {"order": {"order_tags": {"nuvama_code": "NUV123"}}},
    })

    assert subject == "Payment Failed - qode_1"
    assert "Account ID: NUV123" in body
    assert "Failure Message: Insufficient funds" in body


def test_disabled_notifications_do_not_touch_smtp(mocker):
    smtp = mocker.patch("investor_payments.services.notification_service.smtplib.SMTP")

    sent = NotificationService.send_payment_alert({"order": {"order_id": "qode_1"}, "payment": {}})

    assert sent is False
    smtp.assert_not_called()


def test_enabled_notifications_send_mail(mocker):
    settings = get_settings().model_copy(update={"NOTIFICATIONS_ENABLED": True, "SMTP_USERNAME": "u", "SMTP_PASSWORD": "p"})
    smtp = mocker.patch("investor_payments.services.notification_service.smtplib.SMTP")

    sent = NotificationService.send_payment_alert(
        {"order": {"order_id": "qode_1"}, "payment": {"payment_status": "SUCCESS"}}, settings=settings,
    )

    assert sent is True
    server = smtp.return_value.__enter__.return_value
    server.login.assert_called_once_with("u", "p")
    assert server.send_message.call_args[0][0]["Subject"] == "Payment Success - qode_1"
