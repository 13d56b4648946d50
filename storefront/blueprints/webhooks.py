"""Webhooks blueprint — /payments/webhook

Receives Monime webhook events.
Raw body is required for signature verification.
"""

import json
import logging

from flask import Blueprint, request, jsonify

from storefront.errors import SignatureVerificationFailed, ValidationError
from storefront.extensions import db
from storefront.services.monime_client import get_gateway
from storefront.services.webhook_service import handle_webhook_event, record_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/payments")


@webhooks_bp.route("/webhook", methods=["POST"])
def monime_webhook():
    """Receive and process Monime webhook events.

    1. Get raw body bytes (exactly as sent, never re-serialized)
    2. Verify HMAC signature -> 401 on failure
    3. Parse JSON -> 400 if malformed
    4. Append to webhook_events, then reconcile
    5. Return 200, even if the order is unknown or processing failed;
       the gateway redelivers on anything else and a retry won't help
    """
    raw_body = request.get_data(cache=True)
    signature = (
        request.headers.get("monime-signature")
        or request.headers.get("x-monime-signature")
    )

    if not signature:
        logger.warning(f"Webhook without signature from {request.remote_addr}")
        raise SignatureVerificationFailed("Missing signature")

    # --- Verify signature ---
    if not get_gateway().verify_webhook_signature(raw_body, signature):
        logger.warning(
            f"SECURITY: webhook signature verification failed from {request.remote_addr}"
        )
        raise SignatureVerificationFailed()

    # --- Parse only after verification ---
    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        raise ValidationError("Malformed payload")

    if not isinstance(payload, dict) or not payload.get("event") \
            or not isinstance(payload.get("data"), dict):
        logger.warning("Webhook payload missing event or data")
        raise ValidationError("Malformed payload")

    event_type = payload["event"]
    data = payload["data"]

    logger.info(
        f"Webhook received: {event_type} id={data.get('id')} status={data.get('status')}"
    )

    # --- Audit log ---
    try:
        record_webhook_event(event_type, data, signature)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to record webhook event {event_type}: {e}", exc_info=True)

    # --- Process event ---
    try:
        outcome = handle_webhook_event(event_type, data)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling {event_type}: {e}", exc_info=True)
        outcome = "error_logged"

    return jsonify({"success": True, "event": event_type, "status": outcome}), 200
