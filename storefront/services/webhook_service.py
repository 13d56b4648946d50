"""Webhook service — logging and routing of verified gateway events.

Signature verification happens in the blueprint, against the raw body,
before anything here runs.
"""

import logging

from storefront.extensions import db
from storefront.models.webhook_event import WebhookEvent
from storefront.services.payout_service import PAYOUT_EVENTS, apply_payout_status
from storefront.services.reconciliation import (
    CHECKOUT_EVENTS,
    PAYMENT_EVENTS,
    handle_order_event,
)

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = CHECKOUT_EVENTS + PAYMENT_EVENTS + PAYOUT_EVENTS


def record_webhook_event(event_type, data, signature):
    """Append the event to the audit log and commit."""
    db.session.add(WebhookEvent(
        event=event_type,
        data=data,
        signature=signature,
        source="monime",
    ))
    db.session.commit()


def handle_webhook_event(event_type, data):
    """Route a verified event to its handler.

    Returns a short outcome string ("updated", "no_change",
    "order_not_found", "ignored", ...).
    """
    if event_type not in SUPPORTED_EVENTS:
        logger.info(f"Unhandled webhook event: {event_type}")
        return "ignored"

    if event_type in PAYOUT_EVENTS:
        return apply_payout_status(event_type, data)
    return handle_order_event(event_type, data)
