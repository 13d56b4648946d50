"""Tests for the webhooks blueprint and gateway event handling.

Covers:
- Signature verification over the raw body (missing, invalid, tampered)
- Malformed payloads
- Append-only webhook event log
- checkout_session.* / payment.* reconciliation, including redelivery
- payout.* status updates
- Unknown orders and unknown event types (accepted, not processed)
"""

import json
from unittest.mock import patch

import pytest

from storefront.extensions import db
from storefront.models.audit import AuditEvent
from storefront.models.payout import Payout
from storefront.models.webhook_event import WebhookEvent
from storefront.services.order_store import get_order

URL = "/payments/webhook"


def _body(event, data):
    return json.dumps({"event": event, "data": data})


def _post(client, body, signature):
    headers = {"monime-signature": signature} if signature is not None else {}
    return client.post(URL, data=body, content_type="application/json", headers=headers)


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_401(self, client, make_order):
        make_order()
        resp = _post(client, _body("checkout_session.completed", {"id": "cs_99"}), None)
        assert resp.status_code == 401
        assert b"Missing signature" in resp.data
        assert WebhookEvent.query.count() == 0

    def test_invalid_signature_returns_401(self, client, make_order):
        make_order()
        resp = _post(client, _body("checkout_session.completed", {"id": "cs_99"}), "deadbeef")
        assert resp.status_code == 401
        assert b"Invalid signature" in resp.data

    def test_tampered_body_changes_nothing(self, client, make_order, sign):
        """A body altered after signing -> 401, no event row, order untouched."""
        make_order()
        signed = _body("checkout_session.completed", {
            "id": "cs_99", "status": "expired", "metadata": {"orderId": "ord_42"},
        })
        tampered = signed.replace("expired", "completed")

        resp = _post(client, tampered, sign(signed))

        assert resp.status_code == 401
        assert WebhookEvent.query.count() == 0
        order = get_order("ord_42", refresh=True)
        assert order.status == "pending_payment"
        assert order.version_id == 1

    def test_legacy_signature_header_accepted(self, client, make_order, sign):
        make_order()
        body = _body("payment.completed", {
            "status": "completed", "metadata": {"orderId": "ord_42"},
        })
        resp = client.post(
            URL, data=body, content_type="application/json",
            headers={"x-monime-signature": sign(body)},
        )
        assert resp.status_code == 200


class TestMalformedPayload:

    def test_invalid_json_returns_400(self, client, sign):
        body = "{not json"
        resp = _post(client, body, sign(body))
        assert resp.status_code == 400
        assert b"Malformed payload" in resp.data

    @pytest.mark.parametrize("payload", [
        {"data": {"id": "cs_1"}},
        {"event": "payment.completed"},
        {"event": "payment.completed", "data": "nope"},
        ["not", "an", "object"],
    ])
    def test_missing_fields_return_400(self, client, sign, payload):
        body = json.dumps(payload)
        resp = _post(client, body, sign(body))
        assert resp.status_code == 400
        assert WebhookEvent.query.count() == 0

    def test_oversized_body_returns_413(self, client, sign):
        body = _body("payment.completed", {"padding": "x" * (1024 * 1024)})
        resp = _post(client, body, sign(body))
        assert resp.status_code == 413
        assert resp.get_json()["error"] == "REQUEST_ENTITY_TOO_LARGE"
        assert WebhookEvent.query.count() == 0


class TestCheckoutCompleted:
    """The buyer paid: order ord_42 bound to session cs_99, total 150.00."""

    def test_marks_order_paid(self, client, make_order, sign):
        make_order()
        body = _body("checkout_session.completed", {
            "id": "cs_99",
            "status": "completed",
            "metadata": {"orderId": "ord_42"},
            "completed_at": "2026-01-01T12:05:00Z",
        })

        resp = _post(client, body, sign(body))

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["status"] == "updated"
        order = get_order("ord_42", refresh=True)
        assert order.status == "paid"
        assert order.session_status == "completed"
        assert order.paid_at is not None
        assert order.payment_details["sessionId"] == "cs_99"

    def test_event_is_logged(self, client, make_order, sign):
        make_order()
        body = _body("checkout_session.completed", {
            "id": "cs_99", "status": "completed", "metadata": {"orderId": "ord_42"},
        })
        signature = sign(body)
        _post(client, body, signature)

        event = WebhookEvent.query.one()
        assert event.event == "checkout_session.completed"
        assert event.data["id"] == "cs_99"
        assert event.signature == signature
        assert event.source == "monime"

    def test_redelivery_is_idempotent(self, client, make_order, sign):
        make_order()
        body = _body("checkout_session.completed", {
            "id": "cs_99", "status": "completed", "metadata": {"orderId": "ord_42"},
        })

        _post(client, body, sign(body))
        paid_at = get_order("ord_42", refresh=True).paid_at
        resp = _post(client, body, sign(body))

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "no_change"
        assert get_order("ord_42", refresh=True).paid_at == paid_at
        assert AuditEvent.query.filter_by(order_id="ord_42", action="order.paid").count() == 1
        # Every verified delivery is logged, duplicates included
        assert WebhookEvent.query.count() == 2

    def test_late_expiry_after_paid_is_ignored(self, client, make_order, sign):
        make_order()
        paid = _body("checkout_session.completed", {
            "id": "cs_99", "status": "completed", "metadata": {"orderId": "ord_42"},
        })
        expired = _body("checkout_session.expired", {
            "id": "cs_99", "status": "expired", "metadata": {"orderId": "ord_42"},
        })
        _post(client, paid, sign(paid))
        resp = _post(client, expired, sign(expired))

        assert resp.get_json()["status"] == "no_change"
        assert get_order("ord_42", refresh=True).status == "paid"


class TestPaymentEvents:

    def test_payment_failed(self, client, make_order, sign):
        make_order()
        body = _body("payment.failed", {
            "id": "pay_1", "status": "failed", "metadata": {"orderId": "ord_42"},
        })
        resp = _post(client, body, sign(body))
        assert resp.status_code == 200
        assert get_order("ord_42", refresh=True).status == "payment_failed"

    def test_unknown_order_returns_200(self, client, sign):
        body = _body("payment.completed", {
            "status": "completed", "metadata": {"orderId": "ord_ghost"},
        })
        resp = _post(client, body, sign(body))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "order_not_found"

    def test_unknown_event_type_accepted(self, client, sign):
        body = _body("customer.created", {"id": "cus_1"})
        resp = _post(client, body, sign(body))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ignored"
        assert WebhookEvent.query.count() == 1

    def test_processing_error_still_returns_200(self, client, make_order, sign):
        make_order()
        body = _body("payment.completed", {
            "status": "completed", "metadata": {"orderId": "ord_42"},
        })
        with patch(
            "storefront.blueprints.webhooks.handle_webhook_event",
            side_effect=RuntimeError("db went away"),
        ):
            resp = _post(client, body, sign(body))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "error_logged"


class TestPayoutEvents:

    def _payout(self, status="pending"):
        payout = Payout(
            id="payout_seller_1_1",
            gateway_payout_id="po_1",
            seller_id="seller_1",
            amount=5000,
            payout_account="+23276000001",
            status=status,
        )
        db.session.add(payout)
        db.session.commit()
        return payout

    def test_payout_completed(self, client, seed_data, sign):
        self._payout()
        body = _body("payout.completed", {"id": "po_1", "status": "completed"})
        resp = _post(client, body, sign(body))

        assert resp.get_json()["status"] == "updated"
        payout = db.session.get(Payout, "payout_seller_1_1")
        assert payout.status == "completed"
        assert payout.processed_at is not None

    def test_payout_found_by_metadata(self, client, seed_data, sign):
        self._payout()
        body = _body("payout.failed", {
            "id": "po_unknown", "status": "failed",
            "metadata": {"payoutId": "payout_seller_1_1"},
        })
        _post(client, body, sign(body))
        assert db.session.get(Payout, "payout_seller_1_1").status == "failed"

    def test_final_payout_does_not_move(self, client, seed_data, sign):
        self._payout(status="completed")
        body = _body("payout.failed", {"id": "po_1", "status": "failed"})
        resp = _post(client, body, sign(body))
        assert resp.get_json()["status"] == "no_change"
        assert db.session.get(Payout, "payout_seller_1_1").status == "completed"

    def test_unknown_payout(self, client, sign):
        body = _body("payout.completed", {"id": "po_ghost", "status": "completed"})
        resp = _post(client, body, sign(body))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "payout_not_found"


class TestWebhookEventLog:

    def test_rows_cannot_be_updated(self, app):
        event = WebhookEvent(event="payment.completed", data={}, signature="sig")
        db.session.add(event)
        db.session.commit()

        event.data = {"status": "tampered"}
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()

    def test_rows_cannot_be_deleted(self, app):
        event = WebhookEvent(event="payment.completed", data={}, signature="sig")
        db.session.add(event)
        db.session.commit()

        db.session.delete(event)
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()
