"""Payout service — seller balances and withdrawals.

Responsible for:
- Computing a seller's available balance from paid orders minus payouts
- Gating and creating payouts (gateway first, local row second)
- Applying payout status webhooks
- Finding gateway payouts that never got a local row
"""

import logging
import random
import string
from datetime import datetime, timezone

from sqlalchemy import func

from storefront.errors import InsufficientBalance, InvalidSeller, ValidationError
from storefront.extensions import db
from storefront.models.order import Order, OrderItem
from storefront.models.payout import Payout
from storefront.models.user import User
from storefront.services.money import apply_ratio
from storefront.services.monime_client import (
    generate_idempotency_key,
    get_gateway,
    parse_gateway_timestamp,
)
from storefront.services.reconciliation import log_payment_audit

logger = logging.getLogger(__name__)

PAYOUT_EVENTS = ("payout.completed", "payout.failed")


# ──────────────────────────────────────────────
# Balance
# ──────────────────────────────────────────────

def gross_sales(seller_id):
    """Sum of price x quantity over the seller's items in paid orders (minor units)."""
    total = (
        db.session.query(func.coalesce(func.sum(OrderItem.price * OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.status == Order.PAID, OrderItem.seller_id == seller_id)
        .scalar()
    )
    return int(total or 0)


def reserved_payouts(seller_id):
    """Pending + completed payouts, which both hold funds (minor units)."""
    total = (
        db.session.query(func.coalesce(func.sum(Payout.amount), 0))
        .filter(
            Payout.seller_id == seller_id,
            Payout.status.in_(Payout.RESERVING_STATUSES),
        )
        .scalar()
    )
    return int(total or 0)


def balance_summary(seller_id, share_ratio):
    """Breakdown of a seller's balance. All amounts in minor units."""
    gross = gross_sales(seller_id)
    earnings = apply_ratio(gross, share_ratio)
    reserved = reserved_payouts(seller_id)
    return {
        "gross": gross,
        "earnings": earnings,
        "reserved": reserved,
        "available": max(0, earnings - reserved),
    }


def calculate_available_balance(seller_id, share_ratio):
    """Withdrawable amount in minor units. Never negative."""
    return balance_summary(seller_id, share_ratio)["available"]


# ──────────────────────────────────────────────
# Payout creation
# ──────────────────────────────────────────────

def generate_payout_id(seller_id, now):
    millis = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"payout_{seller_id}_{millis}_{suffix}"


def create_payout(seller_id, amount, payout_account, share_ratio,
                  description=None, order_ids=None):
    """Withdraw `amount` minor units to the seller's account.

    The gateway is called before anything is written, so a rejected
    payout never leaves a local row behind. The balance check is re-run
    here on every request; a concurrent payout landing between the check
    and the write is an accepted risk.

    Raises ValidationError, InvalidSeller, InsufficientBalance, GatewayError.
    Returns the committed Payout.
    """
    if not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    if not payout_account:
        raise ValidationError("payoutAccount is required")

    seller = db.session.get(User, seller_id)
    if seller is None or not seller.is_active or not seller.has_store:
        raise InvalidSeller()

    available = calculate_available_balance(seller_id, share_ratio)
    if amount > available:
        logger.info(
            f"Payout refused for seller {seller_id}: requested {amount}, available {available}"
        )
        raise InsufficientBalance(requested=amount, available=available)

    now = datetime.now(timezone.utc)
    payout_id = generate_payout_id(seller_id, now)
    description = description or f"Payout for seller {seller.display_name or seller_id}"
    order_ids = list(order_ids or [])

    result = get_gateway().create_payout(
        amount=amount,
        seller_id=seller_id,
        destination_account=payout_account,
        description=description,
        metadata={
            "payoutId": payout_id,
            "sellerName": seller.display_name,
            "sellerEmail": seller.email,
            "orderIds": order_ids or None,
        },
        idempotency_key=generate_idempotency_key(seller_id, "payout", now),
    )

    status = result["status"] if result["status"] in Payout.STATUSES else Payout.PENDING
    payout = Payout(
        id=payout_id,
        gateway_payout_id=result["id"],
        seller_id=seller_id,
        amount=amount,
        currency=result["currency"],
        payout_account=payout_account,
        description=description,
        status=status,
        order_ids=order_ids,
        gateway_response=result["raw"],
        estimated_arrival=result.get("estimated_arrival"),
    )
    db.session.add(payout)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        # Money is already moving; reconcile-payouts will surface this row
        logger.critical(
            f"Gateway payout {result['id']} for seller {seller_id} succeeded "
            f"but local record {payout_id} could not be saved",
            exc_info=True,
        )
        raise

    log_payment_audit(None, "payout.created", {
        "payout_id": payout_id,
        "gateway_payout_id": result["id"],
        "seller_id": seller_id,
        "amount": amount,
    })
    logger.info(f"Payout {payout_id} created for seller {seller_id} ({amount})")
    return payout


# ──────────────────────────────────────────────
# Webhooks
# ──────────────────────────────────────────────

def apply_payout_status(event_type, data):
    """Apply a payout.completed / payout.failed webhook.

    Payouts only move forward from pending; anything else is logged and
    ignored. Returns a short outcome string.
    """
    status = data.get("status") or event_type.rsplit(".", 1)[-1]
    if status not in (Payout.COMPLETED, Payout.FAILED):
        logger.info(f"{event_type}: ignoring non-final payout status '{status}'")
        return "no_change"

    gateway_id = data.get("id")
    payout_id = (data.get("metadata") or {}).get("payoutId")

    payout = None
    if gateway_id:
        payout = Payout.query.filter_by(gateway_payout_id=gateway_id).first()
    if payout is None and payout_id:
        payout = db.session.get(Payout, payout_id)
    if payout is None:
        logger.warning(f"{event_type}: no local payout for gateway id {gateway_id}")
        return "payout_not_found"

    if payout.status == status:
        return "no_change"
    if payout.status != Payout.PENDING:
        logger.info(
            f"Ignoring {event_type} for payout {payout.id}, already {payout.status}"
        )
        return "no_change"

    previous = payout.status
    payout.status = status
    payout.processed_at = parse_gateway_timestamp(data.get("processed_at")) \
        or datetime.now(timezone.utc)
    db.session.commit()

    log_payment_audit(None, "payout.status_changed", {
        "payout_id": payout.id,
        "seller_id": payout.seller_id,
        "old_status": previous,
        "new_status": status,
        "amount": payout.amount,
    })
    logger.info(f"Payout {payout.id} {previous} -> {status}")
    return "updated"


# ──────────────────────────────────────────────
# Sweep
# ──────────────────────────────────────────────

def find_orphaned_payouts():
    """Gateway payouts created by this store that have no local row.

    Happens when the local write fails after the gateway accepted the
    payout. Reported only; fixing one needs a human to confirm the seller.
    """
    local_gateway_ids = set()
    local_ids = set()
    for payout_id, gateway_id in db.session.query(Payout.id, Payout.gateway_payout_id):
        local_ids.add(payout_id)
        if gateway_id:
            local_gateway_ids.add(gateway_id)

    orphans = []
    for remote in get_gateway().list_payouts():
        metadata = remote.get("metadata") or {}
        if metadata.get("source") != "tokflo_store":
            continue
        if remote.get("id") in local_gateway_ids or metadata.get("payoutId") in local_ids:
            continue
        orphans.append({
            "gateway_payout_id": remote.get("id"),
            "payout_id": metadata.get("payoutId"),
            "seller_id": metadata.get("sellerId"),
            "amount": remote.get("amount"),
            "status": remote.get("status"),
        })
    return orphans
