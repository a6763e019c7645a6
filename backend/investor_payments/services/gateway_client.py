"""
Cashfree Gateway Client — authenticated calls to the PG orders & subscriptions API.

Every call returns the parsed JSON body or raises GatewayError carrying the
provider's HTTP status and message. Transient failures (network errors, 429,
5xx) are retried with exponential backoff; mutating calls send an idempotency
key so a retried create can never produce a second order or subscription.
"""
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx

from investor_payments.config import Settings, get_settings
from investor_payments.errors import GatewayConfigError, GatewayError

logger = logging.getLogger("investor_payments.gateway")


class CashfreeClient:
    """Thin wrapper over httpx for the Cashfree PG REST API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        if not self.settings.gateway_configured:
            raise GatewayConfigError("Cashfree credentials not found in environment variables")

        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.settings.cashfree_base_url,
            timeout=self.settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
            headers={
                "accept": "application/json",
                "content-type": "application/json",
                "x-client-id": self.settings.CASHFREE_CLIENT_ID,
                "x-client-secret": self.settings.CASHFREE_SECRET_KEY,
            },
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # ─── Transport ───────────────────────────────────────────────────

    def request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        api_version: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        """Issue one logical gateway call, retrying transient failures.

        Raises:
            GatewayError: on a non-2xx response or when retries are exhausted.
        """
        headers = {"x-api-version": api_version or self.settings.CASHFREE_API_VERSION}
        if idempotency_key:
            headers["x-idempotency-key"] = idempotency_key

        # A POST without an idempotency key is not safe to repeat.
        retryable = method.upper() == "GET" or idempotency_key is not None
        attempts = 1 + (self.settings.GATEWAY_MAX_RETRIES if retryable else 0)

        last_error: Optional[GatewayError] = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = self.settings.GATEWAY_BACKOFF_SECONDS * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying %s %s in %.2fs (attempt %d/%d): %s",
                    method, endpoint, delay, attempt + 1, attempts, last_error,
                )
                self._sleep(delay)
            try:
                return self._send(method, endpoint, data, headers)
            except GatewayError as exc:
                if not exc.is_transient:
                    raise
                last_error = exc

        raise last_error

    def _send(self, method: str, endpoint: str, data, headers) -> Any:
        logger.info("Cashfree %s %s (api %s)", method, endpoint, headers["x-api-version"])
        body = data if data is not None and method.upper() in ("POST", "PUT", "PATCH") else None
        try:
            response = self._client.request(method, endpoint, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise GatewayError(f"Cashfree request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_success:
            return payload if payload is not None else {}

        message = None
        if isinstance(payload, dict):
            message = payload.get("message")
        message = message or f"Cashfree API error: {response.status_code}"
        logger.error(
            "Cashfree API error on %s %s: status=%s message=%s",
            method, endpoint, response.status_code, message,
        )
        raise GatewayError(message, gateway_status=response.status_code, body=payload)

    # ─── Orders ──────────────────────────────────────────────────────

    def create_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/orders", order_data, idempotency_key=order_data.get("order_id"))

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/orders/{order_id}")

    def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        payments = self.request("GET", f"/orders/{order_id}/payments")
        return payments if isinstance(payments, list) else []

    # ─── Subscriptions ───────────────────────────────────────────────

    def create_plan(self, plan_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/plans", plan_data, idempotency_key=plan_data.get("plan_id"))

    def create_subscription(self, subscription_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request(
            "POST", "/subscriptions", subscription_data,
            idempotency_key=subscription_data.get("subscription_id"),
        )

    def fetch_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/subscriptions/{subscription_id}")

    def manage_subscription(self, cf_subscription_id: str, action: str) -> Dict[str, Any]:
        """POST a PAUSE / ACTIVATE / CANCEL action for a gateway subscription id."""
        return self.request(
            "POST",
            f"/subscriptions/{cf_subscription_id}/manage",
            {"subscription_id": cf_subscription_id, "action": action},
            idempotency_key=f"{action.lower()}-{cf_subscription_id}-{uuid.uuid4().hex[:12]}",
        )

    def pause_subscription(self, cf_subscription_id: str) -> Dict[str, Any]:
        return self.manage_subscription(cf_subscription_id, "PAUSE")

    def activate_subscription(self, cf_subscription_id: str) -> Dict[str, Any]:
        return self.manage_subscription(cf_subscription_id, "ACTIVATE")

    def cancel_subscription(self, cf_subscription_id: str) -> Dict[str, Any]:
        return self.manage_subscription(cf_subscription_id, "CANCEL")


def get_gateway_client():
    """FastAPI dependency: yields a configured client, closes it on finish."""
    client = CashfreeClient()
    try:
        yield client
    finally:
        client.close()
