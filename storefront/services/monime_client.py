"""Monime gateway client — every HTTP call to the payment provider.

Responsible for:
- Creating checkout sessions (with idempotency keys)
- Looking up checkout session status (poll path)
- Creating and listing seller payouts
- Verifying webhook signatures over the raw request bytes

Configuration is an explicit GatewayConfig built once in create_app() and
stored on app.extensions["monime"], so tests can swap in a fake client.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests
from flask import current_app

from storefront.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayConfig:
    base_url: str
    api_token: str
    space_id: str
    webhook_secret: str
    environment: str = "test"
    currency: str = "SLE"
    timeout: float = 15.0

    @classmethod
    def from_app_config(cls, config):
        """Pick the token for the active environment (live vs test)."""
        environment = config.get("MONIME_ENVIRONMENT", "test")
        if environment == "live":
            token = config.get("MONIME_LIVE_API_TOKEN")
        else:
            token = config.get("MONIME_TEST_API_TOKEN")
        return cls(
            base_url=(config.get("MONIME_API_BASE_URL") or "").rstrip("/"),
            api_token=token or "",
            space_id=config.get("MONIME_SPACE_ID") or "",
            webhook_secret=config.get("MONIME_WEBHOOK_SECRET") or "",
            environment=environment,
            currency=config.get("PAYMENT_CURRENCY", "SLE"),
            timeout=float(config.get("GATEWAY_TIMEOUT", 15)),
        )


@dataclass
class SessionStatus:
    """Normalized view of a checkout session lookup. Amounts in minor units."""

    session_id: str
    status: str
    amount: int = None
    currency: str = None
    paid_at: str = None
    expires_at: str = None
    payment_method: str = None
    reference: str = None
    line_items: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data):
        methods = data.get("payment_method_types") or []
        return cls(
            session_id=data.get("id"),
            status=data.get("status") or "pending",
            amount=data.get("amount_total", data.get("amount")),
            currency=data.get("currency"),
            paid_at=data.get("paid_at"),
            expires_at=data.get("expires_at"),
            payment_method=methods[0] if methods else data.get("payment_method"),
            reference=data.get("payment_intent") or data.get("reference"),
            line_items=data.get("line_items") or [],
            metadata=data.get("metadata") or {},
        )

    def to_details(self):
        """Snapshot stored on the order as payment_details."""
        return {
            "amount": self.amount,
            "currency": self.currency,
            "paidAt": self.paid_at,
            "method": self.payment_method,
            "reference": self.reference,
            "expiresAt": self.expires_at,
            "lineItems": self.line_items,
        }


def generate_idempotency_key(order_id, operation, created_at):
    """Deterministic key for one logical gateway operation.

    The same (order_id, operation, created_at) always yields the same key,
    so a caller retrying after a network failure reuses it and the gateway
    deduplicates instead of creating a second session or payout.
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    millis = int(created_at.timestamp() * 1000)
    return f"{operation}_{order_id}_{millis}"


class MonimeClient:
    """Thin request/response wrapper around the Monime HTTP API."""

    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def _headers(self, idempotency_key=None):
        headers = {
            "Authorization": f"Bearer {self.config.api_token}",
            "Monime-Space-Id": self.config.space_id,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _request(self, method, endpoint, payload=None, idempotency_key=None):
        """Send one request; return the unwrapped JSON body.

        Raises GatewayError on non-2xx (with the upstream status) and on
        timeouts / connection failures (upstream_status=None, retryable).
        """
        url = f"{self.config.base_url}{endpoint}"
        try:
            resp = self.session.request(
                method,
                url,
                json=payload,
                headers=self._headers(idempotency_key),
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            logger.warning(f"Monime {method} {endpoint} timed out: {e}")
            raise GatewayError("Payment provider timed out") from e
        except requests.RequestException as e:
            logger.warning(f"Monime {method} {endpoint} failed: {e}")
            raise GatewayError("Payment provider unreachable") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if not 200 <= resp.status_code < 300:
            message, code = _extract_error(data)
            logger.error(
                f"Monime {method} {endpoint} returned {resp.status_code}: {message}"
            )
            raise GatewayError(
                message or f"HTTP error! status: {resp.status_code}",
                upstream_status=resp.status_code,
                gateway_code=code,
                details={"upstream_status": resp.status_code, "body": data},
            )

        if isinstance(data, dict) and "result" in data:
            return data["result"]
        return data

    # ──────────────────────────────────────────────
    # Checkout sessions
    # ──────────────────────────────────────────────

    def create_checkout_session(self, line_items, order_id, customer_info, urls,
                                description=None, metadata=None,
                                idempotency_key=None, created_at=None):
        """Create a hosted checkout session.

        Args:
            line_items: dicts with name, price (minor units, int), quantity,
                        and optional description / image_url.
            urls: dict with success_url, cancel_url, webhook_url.
            idempotency_key: reuse the key from a previous failed attempt;
                        generated from (order_id, created_at) when omitted.

        Returns {"checkout_url", "session_id", "expires_at", "currency"}.
        """
        if idempotency_key is None:
            idempotency_key = generate_idempotency_key(
                order_id, "checkout_session", created_at or datetime.now(timezone.utc)
            )

        payload = {
            "line_items": [
                {
                    "name": item["name"],
                    "description": item.get("description") or "",
                    "price": int(item["price"]),
                    "quantity": int(item["quantity"]),
                    "image_url": item.get("image_url"),
                }
                for item in line_items
            ],
            "order_number": (metadata or {}).get("orderNumber") or order_id,
            "currency": self.config.currency,
            "description": description or f"TokFlo Store - Order {order_id}",
            "customer": {
                "email": customer_info.get("email"),
                "phone": customer_info.get("phone"),
                "name": customer_info.get("name") or "",
            },
            "metadata": {"orderId": order_id, "source": "tokflo_store", **(metadata or {})},
            "success_url": urls.get("success_url"),
            "cancel_url": urls.get("cancel_url"),
            "webhook_url": urls.get("webhook_url"),
        }

        data = self._request(
            "POST", "/checkout-sessions", payload, idempotency_key=idempotency_key
        )
        return {
            "checkout_url": data.get("url"),
            "session_id": data.get("id"),
            "expires_at": data.get("expires_at"),
            "currency": data.get("currency") or self.config.currency,
        }

    def get_checkout_session_status(self, session_id):
        """Fetch current session state. Side-effect free; safe to poll."""
        data = self._request("GET", f"/checkout-sessions/{session_id}")
        status = SessionStatus.from_response(data)
        if not status.session_id:
            status.session_id = session_id
        return status

    # ──────────────────────────────────────────────
    # Payouts
    # ──────────────────────────────────────────────

    def create_payout(self, amount, seller_id, destination_account, description=None,
                      metadata=None, idempotency_key=None, created_at=None):
        """Create a payout of `amount` minor units to the seller's account.

        Returns {"id", "status", "currency", "estimated_arrival", "raw"}.
        """
        if idempotency_key is None:
            idempotency_key = generate_idempotency_key(
                seller_id, "payout", created_at or datetime.now(timezone.utc)
            )

        payload = {
            "amount": int(amount),
            "currency": self.config.currency,
            "destination": destination_account,
            "description": description or f"Payout for seller {seller_id}",
            "metadata": {"sellerId": seller_id, "source": "tokflo_store", **(metadata or {})},
        }
        data = self._request("POST", "/payouts", payload, idempotency_key=idempotency_key)
        return {
            "id": data.get("id"),
            "status": data.get("status") or "pending",
            "currency": data.get("currency") or self.config.currency,
            "estimated_arrival": data.get("estimated_arrival"),
            "raw": data,
        }

    def list_payouts(self):
        """All payouts the gateway knows about for this space."""
        data = self._request("GET", "/payouts")
        if isinstance(data, list):
            return data
        return data.get("data") or data.get("items") or []

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def verify_webhook_signature(self, raw_body, signature):
        """Check an HMAC-SHA256 signature against the exact wire bytes.

        raw_body must be the untouched request body; a parsed and
        re-serialized body can differ in key order or whitespace.
        """
        if not signature or not self.config.webhook_secret:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]
        expected = hmac.new(
            self.config.webhook_secret.encode("utf-8"), raw_body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip())


def _extract_error(data):
    """Pull (message, code) out of a gateway error body."""
    if not isinstance(data, dict):
        return None, None
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message"), error.get("code")
    messages = data.get("messages")
    if isinstance(messages, list) and messages:
        return str(messages[0]), data.get("code")
    return data.get("message"), data.get("code")


def parse_gateway_timestamp(value):
    """Gateway timestamps arrive as ISO-8601 strings or epoch seconds."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable gateway timestamp: {value!r}")
        return None


def init_gateway(app):
    """Build the gateway client from app config and register it."""
    app.extensions["monime"] = MonimeClient(GatewayConfig.from_app_config(app.config))


def get_gateway():
    """The gateway client bound to the current app."""
    return current_app.extensions["monime"]
