"""Tests for the Monime gateway client.

Covers:
- Auth, space and idempotency headers
- Minor-unit checkout payloads
- Error mapping (4xx vs 5xx vs transport failures)
- Session status normalization
- Webhook signature verification over raw bytes
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from storefront.errors import GatewayError
from storefront.services.monime_client import (
    GatewayConfig,
    MonimeClient,
    generate_idempotency_key,
    parse_gateway_timestamp,
)

SECRET = "whsec_unit"


def _client(session=None):
    config = GatewayConfig(
        base_url="https://api.monime.test/v1",
        api_token="mon_unit",
        space_id="spc_unit",
        webhook_secret=SECRET,
    )
    return MonimeClient(config, session=session or MagicMock())


def _response(status_code, payload):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload
    return resp


def _sig(body):
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


class TestGatewayConfig:

    def test_picks_token_for_environment(self):
        config = {
            "MONIME_API_BASE_URL": "https://api.monime.io/v1/",
            "MONIME_ENVIRONMENT": "live",
            "MONIME_LIVE_API_TOKEN": "mon_live",
            "MONIME_TEST_API_TOKEN": "mon_test",
            "MONIME_SPACE_ID": "spc",
            "MONIME_WEBHOOK_SECRET": "whsec",
        }
        gateway_config = GatewayConfig.from_app_config(config)
        assert gateway_config.api_token == "mon_live"
        assert gateway_config.base_url == "https://api.monime.io/v1"

        config["MONIME_ENVIRONMENT"] = "test"
        assert GatewayConfig.from_app_config(config).api_token == "mon_test"


class TestIdempotencyKey:

    def test_stable_for_same_inputs(self):
        created = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        first = generate_idempotency_key("ord_1", "checkout_session", created)
        second = generate_idempotency_key("ord_1", "checkout_session", created)
        assert first == second
        assert first == f"checkout_session_ord_1_{int(created.timestamp() * 1000)}"

    def test_differs_per_operation_and_order(self):
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        keys = {
            generate_idempotency_key("ord_1", "checkout_session", created),
            generate_idempotency_key("ord_2", "checkout_session", created),
            generate_idempotency_key("ord_1", "payout", created),
        }
        assert len(keys) == 3

    def test_naive_datetime_treated_as_utc(self):
        aware = datetime(2026, 1, 1, tzinfo=timezone.utc)
        naive = datetime(2026, 1, 1)
        assert generate_idempotency_key("o", "op", naive) == \
            generate_idempotency_key("o", "op", aware)


class TestCreateCheckoutSession:

    def test_sends_minor_units_and_headers(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"result": {
            "id": "cs_1",
            "url": "https://checkout.monime.test/cs_1",
            "expires_at": "2026-01-01T13:00:00Z",
        }})
        client = _client(session)

        result = client.create_checkout_session(
            line_items=[{"name": "Shirt", "price": 1250, "quantity": 2}],
            order_id="ord_1",
            customer_info={"email": "a@b.c", "phone": "+232"},
            urls={"success_url": "s", "cancel_url": "c", "webhook_url": "w"},
            idempotency_key="checkout_session_ord_1_1",
        )

        assert result == {
            "checkout_url": "https://checkout.monime.test/cs_1",
            "session_id": "cs_1",
            "expires_at": "2026-01-01T13:00:00Z",
            "currency": "SLE",
        }
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == "https://api.monime.test/v1/checkout-sessions"
        assert kwargs["headers"]["Authorization"] == "Bearer mon_unit"
        assert kwargs["headers"]["Monime-Space-Id"] == "spc_unit"
        assert kwargs["headers"]["Idempotency-Key"] == "checkout_session_ord_1_1"
        assert kwargs["json"]["line_items"][0]["price"] == 1250
        assert kwargs["json"]["metadata"]["orderId"] == "ord_1"
        assert kwargs["timeout"] == 15.0


class TestErrorMapping:

    def test_4xx_is_not_retryable(self):
        session = MagicMock()
        session.request.return_value = _response(
            400, {"error": {"message": "Invalid amount", "code": "invalid_amount"}}
        )
        with pytest.raises(GatewayError) as exc:
            _client(session).get_checkout_session_status("cs_1")
        assert exc.value.upstream_status == 400
        assert exc.value.status_code == 400
        assert exc.value.gateway_code == "invalid_amount"
        assert exc.value.message == "Invalid amount"
        assert not exc.value.is_retryable

    def test_5xx_maps_to_502_and_is_retryable(self):
        session = MagicMock()
        session.request.return_value = _response(503, {"message": "down"})
        with pytest.raises(GatewayError) as exc:
            _client(session).get_checkout_session_status("cs_1")
        assert exc.value.status_code == 502
        assert exc.value.is_retryable

    def test_timeout_is_retryable(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(GatewayError) as exc:
            _client(session).get_checkout_session_status("cs_1")
        assert exc.value.upstream_status is None
        assert exc.value.status_code == 502
        assert exc.value.is_retryable


class TestSessionStatus:

    def test_normalizes_lookup(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"result": {
            "id": "cs_1",
            "status": "completed",
            "amount_total": 15000,
            "currency": "SLE",
            "paid_at": "2026-01-01T12:05:00Z",
            "payment_method_types": ["mobile_money"],
            "payment_intent": "pi_1",
        }})
        status = _client(session).get_checkout_session_status("cs_1")
        assert status.status == "completed"
        assert status.amount == 15000
        assert status.payment_method == "mobile_money"
        assert status.reference == "pi_1"
        assert status.to_details()["paidAt"] == "2026-01-01T12:05:00Z"

    def test_missing_status_defaults_to_pending(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"id": "cs_1"})
        assert _client(session).get_checkout_session_status("cs_1").status == "pending"


class TestListPayouts:

    def test_accepts_wrapped_list(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"result": {"data": [{"id": "po_1"}]}})
        assert _client(session).list_payouts() == [{"id": "po_1"}]


class TestWebhookSignature:

    def test_valid_signature(self):
        body = json.dumps({"event": "payment.completed", "data": {}}).encode()
        assert _client().verify_webhook_signature(body, _sig(body))

    def test_sha256_prefix_accepted(self):
        body = b'{"event":"payment.completed","data":{}}'
        assert _client().verify_webhook_signature(body, "sha256=" + _sig(body))

    def test_tampered_body_rejected(self):
        body = b'{"event":"payment.completed","data":{"status":"failed"}}'
        signature = _sig(body)
        tampered = body.replace(b"failed", b"completed")
        assert not _client().verify_webhook_signature(tampered, signature)

    def test_reserialized_body_rejected(self):
        """Whitespace differences matter; only the wire bytes are signed."""
        body = b'{"event": "payment.completed", "data": {}}'
        signature = _sig(body)
        reserialized = json.dumps(json.loads(body), separators=(",", ":")).encode()
        assert not _client().verify_webhook_signature(reserialized, signature)

    def test_missing_signature_rejected(self):
        assert not _client().verify_webhook_signature(b"{}", None)
        assert not _client().verify_webhook_signature(b"{}", "")


class TestParseGatewayTimestamp:

    def test_iso_and_epoch(self):
        iso = parse_gateway_timestamp("2026-01-01T12:00:00Z")
        epoch = parse_gateway_timestamp(int(iso.timestamp()))
        assert iso == epoch

    def test_garbage_is_none(self):
        assert parse_gateway_timestamp("tomorrow") is None
        assert parse_gateway_timestamp(None) is None
