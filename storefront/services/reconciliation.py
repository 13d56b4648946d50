"""Reconciliation service — the single place order payment status changes.

Both event sources feed reconcile_order():
- Poll path: verify_payment_status() looks the session up on the gateway
- Webhook path: handle_order_event() uses the status carried by the event

Guarantees:
- Status only moves forward: pending_payment -> processing_payment -> terminal
- A repeated status is a bookkeeping-only write (payment_status, updated_at)
- paid_at is set once, and the paid side effects fire once, by whichever
  request wins the versioned write that moves the order into `paid`
"""

import logging
from collections import namedtuple
from datetime import datetime, timezone

from flask import current_app

from storefront.errors import OrderNotFound, ValidationError
from storefront.extensions import db
from storefront.models.audit import AuditEvent
from storefront.models.order import Order
from storefront.services.money import format_leones
from storefront.services.monime_client import get_gateway
from storefront.services.order_store import (
    StaleOrderWrite,
    apply_order_update,
    get_order,
    get_order_by_session,
)

logger = logging.getLogger(__name__)

# Versioned-write attempts before giving up on a hot order
MAX_WRITE_ATTEMPTS = 3

RAW_TO_CANONICAL = {
    "pending": Order.PENDING_PAYMENT,
    "completed": Order.PAID,
    "failed": Order.PAYMENT_FAILED,
    "cancelled": Order.CANCELLED,
    "expired": Order.EXPIRED,
}

STATUS_MESSAGES = {
    Order.PENDING_PAYMENT: "Payment is pending",
    Order.PROCESSING_PAYMENT: "Payment is being processed",
    Order.PAID: "Payment completed successfully",
    Order.PAYMENT_FAILED: "Payment failed",
    Order.CANCELLED: "Payment was cancelled",
    Order.EXPIRED: "Payment link has expired",
}

CHECKOUT_EVENTS = ("checkout_session.completed", "checkout_session.expired")
PAYMENT_EVENTS = (
    "payment.completed",
    "payment.failed",
    "payment.cancelled",
    "payment.expired",
)

ReconcileResult = namedtuple(
    "ReconcileResult", ["order", "previous_status", "status", "changed", "paid_now"]
)


def canonical_status(raw_status, in_flight=False):
    """Map a raw gateway status onto the canonical order status.

    `processing` only counts as processing_payment when the gateway was
    asked directly (in_flight=True); without that detail it is still
    pending. Unknown statuses are treated as pending.
    """
    if raw_status == "processing":
        return Order.PROCESSING_PAYMENT if in_flight else Order.PENDING_PAYMENT
    return RAW_TO_CANONICAL.get(raw_status, Order.PENDING_PAYMENT)


def _rank(status):
    if status in Order.TERMINAL_STATUSES:
        return 2
    if status == Order.PROCESSING_PAYMENT:
        return 1
    return 0


def status_message(status):
    return STATUS_MESSAGES.get(status, STATUS_MESSAGES[Order.PENDING_PAYMENT])


# ──────────────────────────────────────────────
# Core
# ──────────────────────────────────────────────

def reconcile_order(order_id, raw_status, raw_details=None, session_status=None,
                    in_flight=False, source="webhook"):
    """Apply one raw status observation to an order.

    Raises OrderNotFound if the order doesn't exist, and StaleOrderWrite if
    every write attempt lost to a concurrent update.
    Returns a ReconcileResult.
    """
    new_status = canonical_status(raw_status, in_flight=in_flight)

    for attempt in range(MAX_WRITE_ATTEMPTS):
        order = get_order(order_id, refresh=attempt > 0)
        if order is None:
            raise OrderNotFound(order_id)

        previous = order.status
        now = datetime.now(timezone.utc)
        paid_now = False

        if new_status == previous:
            # Duplicate delivery or repeated poll: bookkeeping only
            fields = {"payment_status": raw_status, "updated_at": now}
            if session_status:
                fields["session_status"] = session_status
        elif order.is_terminal or _rank(new_status) <= _rank(previous):
            if attempt == 0:
                # The cached row can predate a concurrent commit; report what is stored
                order = get_order(order_id, refresh=True) or order
                previous = order.status
            logger.info(
                f"Ignoring stale {source} status '{raw_status}' for order {order_id} "
                f"(stored: {previous})"
            )
            return ReconcileResult(order, previous, previous, False, False)
        else:
            fields = {
                "status": new_status,
                "payment_status": raw_status,
                "updated_at": now,
            }
            if session_status:
                fields["session_status"] = session_status
            if raw_details is not None:
                fields["payment_details"] = raw_details
            if new_status == Order.PAID and order.paid_at is None:
                fields["paid_at"] = now
                paid_now = True

        try:
            apply_order_update(order, fields)
        except StaleOrderWrite:
            continue

        changed = new_status != previous
        if changed:
            logger.info(
                f"Order {order_id} status {previous} -> {new_status} via {source}",
            )
            _log_status_change(order, previous, new_status, raw_status, source)
        if paid_now:
            _run_paid_side_effects(order, source)
        return ReconcileResult(order, previous, order.status, changed, paid_now)

    logger.error(f"Gave up reconciling order {order_id} after {MAX_WRITE_ATTEMPTS} attempts")
    raise StaleOrderWrite(order_id)


# ──────────────────────────────────────────────
# Poll path
# ──────────────────────────────────────────────

def verify_payment_status(order_id=None, checkout_session_id=None):
    """Fetch fresh session status from the gateway and reconcile.

    Gateway failures propagate as GatewayError before anything is written.
    Returns (ReconcileResult, SessionStatus).
    """
    if not order_id and not checkout_session_id:
        raise ValidationError("Either orderId or checkoutSessionId is required")

    if order_id:
        order = get_order(order_id)
    else:
        order = get_order_by_session(checkout_session_id)
    if order is None:
        raise OrderNotFound(order_id or checkout_session_id)

    if (checkout_session_id and order.checkout_session_id
            and checkout_session_id != order.checkout_session_id):
        raise ValidationError("Checkout session does not belong to this order")

    session_id = order.checkout_session_id or checkout_session_id
    if not session_id:
        raise ValidationError("Unable to determine checkout session ID")

    session = get_gateway().get_checkout_session_status(session_id)
    result = reconcile_order(
        order.id,
        session.status,
        raw_details=session.to_details(),
        session_status=session.status,
        in_flight=True,
        source="poll",
    )
    return result, session


# ──────────────────────────────────────────────
# Webhook path
# ──────────────────────────────────────────────

def handle_order_event(event_type, data):
    """Reconcile an order from a checkout_session.* or payment.* webhook.

    Unknown orders are logged and dropped; redelivering them would never
    succeed. Returns a short outcome string for the webhook response.
    """
    raw_status = data.get("status") or event_type.rsplit(".", 1)[-1]
    metadata = data.get("metadata") or {}
    is_checkout = event_type in CHECKOUT_EVENTS

    order_id = metadata.get("orderId")
    if not order_id and is_checkout:
        order = get_order_by_session(data.get("id"))
        order_id = order.id if order else None

    if not order_id:
        logger.warning(f"{event_type}: no order reference in payload, dropping")
        return "order_not_found"

    if is_checkout:
        raw_details = {
            "sessionId": data.get("id"),
            "status": raw_status,
            "lineItems": data.get("line_items"),
            "completedAt": data.get("completed_at"),
            "expiresAt": data.get("expires_at"),
        }
        session_status = raw_status
    else:
        raw_details = {
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "paidAt": data.get("paid_at"),
            "method": data.get("payment_method"),
            "reference": data.get("reference"),
        }
        session_status = None

    try:
        result = reconcile_order(
            order_id,
            raw_status,
            raw_details=raw_details,
            session_status=session_status,
            in_flight=False,
            source="webhook",
        )
    except OrderNotFound:
        logger.warning(f"{event_type}: order {order_id} not found, dropping")
        return "order_not_found"

    return "updated" if result.changed else "no_change"


# ──────────────────────────────────────────────
# Side effects
# ──────────────────────────────────────────────

def log_payment_audit(order_id, action, metadata=None):
    """Record a payment audit event and commit it.

    Actor is None because status changes are gateway-initiated.
    """
    db.session.add(AuditEvent(
        order_id=order_id,
        actor_user_id=None,
        action=action,
        metadata_=metadata or {},
    ))
    db.session.commit()


def _log_status_change(order, previous, new_status, raw_status, source):
    try:
        log_payment_audit(order.id, "order.status_changed", {
            "old_status": previous,
            "new_status": new_status,
            "raw_status": raw_status,
            "source": source,
        })
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to audit status change for order {order.id}: {e}")


def _run_paid_side_effects(order, source):
    """One-time work for an order that just became paid.

    Only reached by the request whose write set paid_at. Each step is
    isolated so a failing email can't undo or block the others.
    """
    try:
        log_payment_audit(order.id, "order.paid", {
            "total_amount": order.total_amount,
            "currency": order.currency,
            "seller_ids": order.seller_ids,
            "source": source,
        })
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to audit paid order {order.id}: {e}")

    _notify_sellers(order)
    _send_order_confirmation(order)


def _notify_sellers(order):
    """Email every seller with items in the order."""
    try:
        from storefront.models.user import User
        from storefront.services.email_service import send_email

        for seller_id in order.seller_ids:
            seller = db.session.get(User, seller_id)
            if not seller or not seller.email:
                continue
            items = [i for i in order.items if i.seller_id == seller_id]
            send_email(
                to=seller.email,
                subject=f"New paid order {order.order_number}",
                template="emails/seller_order_paid.html",
                context={
                    "seller_name": seller.display_name or "",
                    "order_number": order.order_number,
                    "items": [
                        {
                            "name": i.name or i.product_id,
                            "quantity": i.quantity,
                            "line_total": format_leones(i.line_total),
                        }
                        for i in items
                    ],
                    "delivery_address": order.delivery_address or {},
                },
            )
            logger.info(f"Seller notification sent to {seller.email} for order {order.id}")
    except Exception as e:
        # Never let email failure break reconciliation
        logger.error(f"Failed to notify sellers for order {order.id}: {e}")


def _send_order_confirmation(order):
    """Email the buyer a payment confirmation."""
    try:
        from storefront.services.email_service import send_email

        email = (order.customer_info or {}).get("email")
        if not email:
            return
        app_base_url = current_app.config["APP_BASE_URL"]
        send_email(
            to=email,
            subject=f"Payment received for order {order.order_number}",
            template="emails/order_confirmation.html",
            context={
                "customer_name": (order.customer_info or {}).get("name") or "",
                "order_number": order.order_number,
                "total": format_leones(order.total_amount),
                "items": [
                    {"name": i.name or i.product_id, "quantity": i.quantity}
                    for i in order.items
                ],
                "order_url": f"{app_base_url}/orders/{order.id}",
            },
        )
    except Exception as e:
        logger.error(f"Failed to send confirmation for order {order.id}: {e}")
