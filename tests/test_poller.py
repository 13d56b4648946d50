"""Tests for the client-side payment status poller."""

from unittest.mock import MagicMock

import pytest
import requests

from storefront.errors import GatewayError, OrderNotFound, PaymentError, ValidationError
from storefront.poller import PaymentStatusPoller


def _resp(status_code=200, order_status=None, json_error=False, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    if json_error:
        resp.json.side_effect = ValueError("no json")
    elif body is not None:
        resp.json.return_value = body
    else:
        resp.json.return_value = {"orderStatus": order_status, "statusMessage": order_status}
    return resp


def _poller(responses, **kwargs):
    session = MagicMock()
    session.get.side_effect = responses
    sleeps = []
    poller = PaymentStatusPoller(
        "https://shop.test/",
        order_id="ord_42",
        session=session,
        sleep=sleeps.append,
        **kwargs,
    )
    return poller, session, sleeps


class TestPaymentStatusPoller:

    def test_polls_until_terminal(self):
        changes = []
        poller, session, sleeps = _poller(
            [_resp(order_status="pending_payment"),
             _resp(order_status="processing_payment"),
             _resp(order_status="processing_payment"),
             _resp(order_status="paid")],
            interval=5,
            on_change=lambda status, body: changes.append(status),
        )

        assert poller.run() == "paid"
        assert changes == ["pending_payment", "processing_payment", "paid"]
        assert sleeps == [5, 5, 5]
        assert session.get.call_count == 4

    def test_sends_order_and_session_ids(self):
        poller, session, _ = _poller(
            [_resp(order_status="paid")], checkout_session_id="cs_99"
        )
        poller.run()
        url = session.get.call_args.args[0]
        assert url == "https://shop.test/payments/verify-status"
        assert session.get.call_args.kwargs["params"] == {
            "orderId": "ord_42", "checkoutSessionId": "cs_99",
        }

    def test_transient_failures_keep_polling(self):
        poller, _, sleeps = _poller([
            requests.ConnectionError("offline"),
            _resp(status_code=502),
            _resp(json_error=True),
            _resp(order_status="expired"),
        ])
        assert poller.run() == "expired"
        assert len(sleeps) == 3

    def test_unknown_order_stops_polling(self):
        poller, session, _ = _poller([_resp(status_code=404, body={
            "success": False, "error": "ORDER_NOT_FOUND", "message": "Order ord_42 does not exist",
        })], max_polls=5)
        with pytest.raises(OrderNotFound):
            poller.run()
        assert session.get.call_count == 1

    def test_validation_error_stops_polling(self):
        poller, session, sleeps = _poller([_resp(status_code=400, body={
            "success": False, "error": "VALIDATION_ERROR",
            "message": "Checkout session does not belong to this order",
        })] * 50, max_polls=50)
        with pytest.raises(ValidationError):
            poller.run()
        assert session.get.call_count == 1
        assert sleeps == []

    def test_gateway_client_error_is_not_order_not_found(self):
        # The gateway's own 404 is passed through, but the order exists
        poller, session, _ = _poller([_resp(status_code=404, body={
            "success": False, "error": "GATEWAY_ERROR",
            "message": "Payment provider error, please try again", "retryable": False,
        })], max_polls=5)
        with pytest.raises(GatewayError) as exc:
            poller.run()
        assert exc.value.upstream_status == 404
        assert session.get.call_count == 1

    def test_retryable_errors_keep_polling(self):
        poller, _, sleeps = _poller([
            _resp(status_code=502, body={"error": "GATEWAY_ERROR", "retryable": True}),
            _resp(status_code=409, body={"error": "CONFLICT", "retryable": True}),
            _resp(status_code=429, body={"error": "TOO_MANY_REQUESTS"}),
            _resp(order_status="paid"),
        ])
        assert poller.run() == "paid"
        assert len(sleeps) == 3

    def test_other_client_errors_stop_polling(self):
        poller, session, _ = _poller([_resp(status_code=404, json_error=True)], max_polls=5)
        with pytest.raises(PaymentError) as exc:
            poller.run()
        assert exc.value.status_code == 404
        assert session.get.call_count == 1

    def test_max_polls(self):
        poller, session, sleeps = _poller(
            [_resp(order_status="pending_payment")] * 3, max_polls=3
        )
        assert poller.run() == "pending_payment"
        assert session.get.call_count == 3
        assert len(sleeps) == 2
        assert not poller.is_terminal

    def test_stop_prevents_next_poll(self):
        poller, session, _ = _poller([])
        poller.stop()
        assert poller.run() is None
        session.get.assert_not_called()
