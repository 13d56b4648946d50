"""Payments blueprint — /payments/*

JSON API used by the storefront checkout and seller dashboard.

Routes:
- POST /payments/create-checkout  — create order + gateway checkout session
- GET  /payments/verify-status    — poll: fetch gateway status and reconcile
- POST /payments/create-payout    — seller withdrawal
- GET  /payments/balance          — seller balance breakdown
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from storefront.decorators import seller_self_required
from storefront.errors import ValidationError
from storefront.extensions import limiter
from storefront.services.checkout_service import create_checkout
from storefront.services.money import to_major_float, to_minor_units
from storefront.services.payout_service import balance_summary, create_payout
from storefront.services.reconciliation import status_message, verify_payment_status

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _iso(value):
    return value.isoformat() if value else None


# ──────────────────────────────────────────────
# POST /payments/create-checkout
# ──────────────────────────────────────────────

@payments_bp.route("/create-checkout", methods=["POST"])
@limiter.limit("20 per minute")
def create_checkout_route():
    """Create the order and its hosted checkout session.

    The client redirects the browser to checkoutUrl on success.
    """
    data = _json_body()
    customer_id = current_user.id if current_user.is_authenticated else None

    order = create_checkout(data, customer_id=customer_id)

    return jsonify({
        "success": True,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "sessionId": order.checkout_session_id,
        "checkoutUrl": order.checkout_url,
        "amount": to_major_float(order.total_amount),
        "currency": order.currency,
        "expiresAt": _iso(order.expires_at),
        "message": "Checkout session created successfully",
    })


# ──────────────────────────────────────────────
# GET /payments/verify-status
# ──────────────────────────────────────────────

@payments_bp.route("/verify-status")
def verify_status():
    """One reconciliation pass from a fresh gateway lookup.

    Polled by the payment status page until orderStatus is terminal.
    """
    result, session = verify_payment_status(
        order_id=request.args.get("orderId"),
        checkout_session_id=request.args.get("checkoutSessionId"),
    )
    order = result.order

    return jsonify({
        "success": True,
        "orderId": order.id,
        "checkoutSessionId": order.checkout_session_id,
        "paymentStatus": session.status,
        "sessionStatus": order.session_status,
        "orderStatus": result.status,
        "statusMessage": status_message(result.status),
        "paidAt": _iso(order.paid_at),
        "paymentDetails": {
            "amount": to_major_float(session.amount) if session.amount is not None else None,
            "currency": session.currency or order.currency,
            "paidAt": session.paid_at,
            "method": session.payment_method,
            "reference": session.reference,
            "expiresAt": session.expires_at,
        },
    })


# ──────────────────────────────────────────────
# POST /payments/create-payout
# ──────────────────────────────────────────────

@payments_bp.route("/create-payout", methods=["POST"])
@limiter.limit("5 per minute")
@seller_self_required
def create_payout_route():
    """Withdraw part of the caller's available balance."""
    data = _json_body()
    seller_id = data.get("sellerId")
    payout_account = data.get("payoutAccount")

    if not seller_id or data.get("amount") in (None, "") or not payout_account:
        raise ValidationError("sellerId, amount, and payoutAccount are required")
    try:
        amount = to_minor_units(data["amount"])
    except ValueError:
        raise ValidationError("Amount must be a number")

    payout = create_payout(
        seller_id=seller_id,
        amount=amount,
        payout_account=payout_account,
        share_ratio=current_app.config["SELLER_SHARE_RATIO"],
        description=data.get("description"),
        order_ids=data.get("orderIds") or [],
    )

    return jsonify({
        "success": True,
        "payoutId": payout.id,
        "gatewayPayoutId": payout.gateway_payout_id,
        "amount": to_major_float(payout.amount),
        "currency": payout.currency,
        "status": payout.status,
        "estimatedArrival": payout.estimated_arrival,
        "message": "Payout created successfully",
    })


# ──────────────────────────────────────────────
# GET /payments/balance
# ──────────────────────────────────────────────

@payments_bp.route("/balance")
@login_required
def balance():
    """Balance breakdown for the authenticated seller."""
    summary = balance_summary(
        current_user.id, current_app.config["SELLER_SHARE_RATIO"]
    )
    return jsonify({
        "success": True,
        "sellerId": current_user.id,
        "currency": current_app.config["PAYMENT_CURRENCY"],
        **{key: to_major_float(value) for key, value in summary.items()},
    })
