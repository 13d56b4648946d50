"""Client-side payment status poller.

Calls GET /payments/verify-status on a fixed interval until the order
reaches a terminal status, reporting every status change along the way.
Stopping is just "don't schedule another poll"; each request is short
compared with the interval, so there is nothing in flight to cancel.

Usage:
    poller = PaymentStatusPoller(
        "https://shop.example.com",
        order_id="order_1700000000000_abc123xyz",
        on_change=lambda status, body: print(status),
    )
    final = poller.run()
"""

import logging
import time

import requests

from storefront.errors import GatewayError, OrderNotFound, PaymentError, ValidationError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("paid", "payment_failed", "cancelled", "expired")

# Non-200 statuses worth another poll even without a `retryable` flag
TRANSIENT_HTTP_STATUSES = (409, 429)


class PaymentStatusPoller:
    def __init__(self, base_url, order_id, checkout_session_id=None, interval=5.0,
                 on_change=None, session=None, sleep=time.sleep, max_polls=None,
                 timeout=10):
        self.base_url = base_url.rstrip("/")
        self.order_id = order_id
        self.checkout_session_id = checkout_session_id
        self.interval = interval
        self.on_change = on_change
        self.session = session or requests.Session()
        self.sleep = sleep
        self.max_polls = max_polls
        self.timeout = timeout

        self.status = None
        self.last_response = None
        self.polls = 0
        self._stopped = False

    def stop(self):
        """Don't schedule another poll (e.g. the user navigated away)."""
        self._stopped = True

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def poll_once(self):
        """One request. Returns the order status, or None if it's unknown this round.

        Errors another poll can't fix are raised: ValidationError,
        OrderNotFound, and non-retryable GatewayError.
        """
        self.polls += 1
        params = {"orderId": self.order_id}
        if self.checkout_session_id:
            params["checkoutSessionId"] = self.checkout_session_id

        try:
            resp = self.session.get(
                f"{self.base_url}/payments/verify-status",
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Status poll for {self.order_id} failed, will retry: {e}")
            return None

        if resp.status_code != 200:
            self._check_error(resp)
            logger.warning(
                f"Status poll for {self.order_id} returned {resp.status_code}, will retry"
            )
            return None

        try:
            body = resp.json()
        except ValueError:
            logger.warning(f"Status poll for {self.order_id} returned invalid JSON")
            return None

        status = body.get("orderStatus")
        self.last_response = body
        if status and status != self.status:
            self.status = status
            if self.on_change:
                self.on_change(status, body)
        return status

    def _check_error(self, resp):
        """Raise for a permanent error response; return for a transient one."""
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        code = body.get("error")
        message = body.get("message") or f"HTTP {resp.status_code}"

        if code == "VALIDATION_ERROR":
            raise ValidationError(message)
        if code == "ORDER_NOT_FOUND":
            raise OrderNotFound(self.order_id)
        if code == "GATEWAY_ERROR" and not body.get("retryable"):
            raise GatewayError(message, upstream_status=resp.status_code)
        if (body.get("retryable") or resp.status_code >= 500
                or resp.status_code in TRANSIENT_HTTP_STATUSES):
            return
        raise PaymentError(message, code=code or "HTTP_ERROR", status_code=resp.status_code)

    def run(self):
        """Poll until terminal, stopped, or max_polls. Returns the last known status."""
        while not self._stopped:
            self.poll_once()
            if self.is_terminal:
                break
            if self.max_polls is not None and self.polls >= self.max_polls:
                break
            self.sleep(self.interval)
        return self.status
