"""Payment exceptions.

Every error the payment API can raise maps onto an HTTP status here, so
blueprints can let them propagate and the app-level handler renders JSON.
"""


class PaymentError(Exception):
    """Base exception for all payment-related errors."""

    status_code = 500

    def __init__(self, message, code="PAYMENT_ERROR", details=None, status_code=None):
        self.message = message
        self.code = code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self, include_details=False):
        """Convert exception to dictionary for API responses."""
        body = {"success": False, "error": self.code, "message": self.message}
        if include_details and self.details:
            body["details"] = self.details
        return body


class ValidationError(PaymentError):
    """Bad caller input. Never retried."""

    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class GatewayError(PaymentError):
    """The payment provider rejected or failed a request.

    Attributes:
        upstream_status: HTTP status returned by the gateway, or None when
            the request never got a response (timeout, connection error).
        gateway_code: The provider's own error code, if it sent one.
    """

    def __init__(self, message, upstream_status=None, gateway_code=None, details=None):
        self.upstream_status = upstream_status
        self.gateway_code = gateway_code
        super().__init__(
            message,
            code="GATEWAY_ERROR",
            details=details,
            status_code=self._map_status(upstream_status),
        )

    @staticmethod
    def _map_status(upstream_status):
        if upstream_status is not None and 400 <= upstream_status < 500:
            return upstream_status
        return 502

    @property
    def is_retryable(self):
        """5xx and transport failures are transient; 4xx are the caller's fault."""
        return self.upstream_status is None or self.upstream_status >= 500


class OrderNotFound(PaymentError):
    status_code = 404

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} does not exist", code="ORDER_NOT_FOUND")


class InsufficientBalance(PaymentError):
    """Requested payout exceeds the seller's available balance.

    Amounts are in minor currency units.
    """

    status_code = 400

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(
            "Requested amount exceeds available balance",
            code="INSUFFICIENT_BALANCE",
            details={"requested": requested, "available": available},
        )


class InvalidSeller(PaymentError):
    status_code = 400

    def __init__(self, message="User does not have an active store"):
        super().__init__(message, code="INVALID_SELLER")


class SignatureVerificationFailed(PaymentError):
    """Webhook signature missing or wrong. Body is never parsed."""

    status_code = 401

    def __init__(self, message="Invalid signature"):
        super().__init__(message, code="INVALID_SIGNATURE")
