"""
Notification Service — operator e-mail alerts for payment outcomes.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from investor_payments.config import Settings, get_settings

logger = logging.getLogger("investor_payments.notifications")


class NotificationService:
    @staticmethod
    def build_payment_alert(event: Dict[str, Any]) -> tuple[str, str]:
        """Subject and plain-text body for a payment webhook event."""
        order = event.get("order") or {}
        payment = event.get("payment") or {}
        customer = event.get("customer_details") or {}
        tags = ((event.get("data") or {}).get("order") or {}).get("order_tags") or {}

        status = payment.get("payment_status") or "UNKNOWN"
        is_success = status.upper() == "SUCCESS"
        order_id = order.get("order_id", "-")

        lines = [
            f"Payment Status: {status}",
            f"Order ID: {order_id}",
            f"Payment ID: {payment.get('cf_payment_id', '-')}",
            f"Date: {payment.get('payment_time', '-')}",
            "",
            f"Amount: ₹{payment.get('payment_amount', order.get('order_amount', '-'))}",
            f"Currency: {payment.get('payment_currency', order.get('order_currency', 'INR'))}",
            f"Customer: {customer.get('customer_name', '-')}",
            f"Email: {customer.get('customer_email', '-')}",
            f"Phone: {customer.get('customer_phone', '-')}",
        ]
        for key, label in (("nuvama_code", "Account ID"), ("client_id", "Client ID"), ("order_type", "Order Type")):
            if tags.get(key):
                lines.append(f"{label}: {tags[key]}")
        if payment.get("bank_reference"):
            lines.append(f"Bank Reference: {payment['bank_reference']}")
        if not is_success and payment.get("payment_message"):
            lines += ["", f"Failure Message: {payment['payment_message']}"]

        subject = f"Payment {'Success' if is_success else 'Failed'} - {order_id}"
        return subject, "\n".join(lines)

    @staticmethod
    def send_payment_alert(event: Dict[str, Any], settings: Optional[Settings] = None) -> bool:
        """E-mail the payments desk about a webhook event.

        Returns True if a message was handed to the SMTP server. Raises on SMTP
        failure; callers that must not fail swallow the exception.
        """
        settings = settings or get_settings()
        subject, body = NotificationService.build_payment_alert(event)

        if not settings.NOTIFICATIONS_ENABLED:
            logger.info("Notifications disabled; prepared alert '%s'", subject)
            return False

        msg = MIMEMultipart()
        msg["From"] = settings.EMAIL_FROM
        msg["To"] = ", ".join(settings.PAYMENT_ALERT_RECIPIENTS)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT) as server:
            server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)

        logger.info("Sent payment alert '%s'", subject)
        return True
