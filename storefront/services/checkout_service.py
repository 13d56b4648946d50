"""Checkout service — turns a cart into an order bound to a gateway session.

Order of operations:
1. Validate the cart and snapshot it in minor units
2. Create the gateway checkout session (retrying transient failures with
   the same idempotency key)
3. Only then persist the order, already bound to its session id
"""

import logging
import random
import string
from datetime import datetime, timezone

from flask import current_app

from storefront.errors import GatewayError, ValidationError
from storefront.extensions import db
from storefront.services.money import to_minor_units
from storefront.services.monime_client import (
    generate_idempotency_key,
    get_gateway,
    parse_gateway_timestamp,
)
from storefront.services.order_store import create_order

logger = logging.getLogger(__name__)

_BASE36 = string.ascii_lowercase + string.digits


def generate_order_id(now):
    """order_<epoch millis>_<9 random base36 chars>."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"order_{millis}_{suffix}"


def generate_order_number(now):
    """Short human-facing number: TF- plus the last 8 digits of epoch millis."""
    return f"TF-{str(int(now.timestamp() * 1000))[-8:]}"


def snapshot_cart(cart_items):
    """Validate raw cart items and freeze them into order-item dicts.

    Raises ValidationError on the first bad item.
    """
    if not cart_items or not isinstance(cart_items, list):
        raise ValidationError("cartItems array is required and cannot be empty")

    items = []
    for index, raw in enumerate(cart_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"cartItems[{index}] must be an object")
        seller_id = raw.get("sellerId")
        if not seller_id:
            raise ValidationError(f"cartItems[{index}] is missing sellerId")
        try:
            price = to_minor_units(raw.get("price"))
            quantity = int(raw.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationError(f"cartItems[{index}] has an invalid price or quantity")
        if price < 0:
            raise ValidationError(f"cartItems[{index}] price cannot be negative")
        if quantity <= 0:
            raise ValidationError(f"cartItems[{index}] quantity must be at least 1")

        items.append({
            "product_id": raw.get("productId") or raw.get("id"),
            "seller_id": seller_id,
            "name": raw.get("name") or raw.get("title") or "Product",
            "description": raw.get("description"),
            "image_url": raw.get("imageUrl") or raw.get("image"),
            "price": price,
            "quantity": quantity,
        })
    return items


def _validate_customer(customer_info):
    if not isinstance(customer_info, dict) or not customer_info.get("email") \
            or not customer_info.get("phone"):
        raise ValidationError("Customer email and phone are required")


def create_checkout(payload, customer_id=None):
    """Create a gateway checkout session and the order it pays for.

    Args:
        payload: request body with cartItems, customerInfo, deliveryAddress,
                 paymentMethod.
        customer_id: authenticated buyer, if any.

    Returns the committed Order.
    Raises ValidationError on bad input, GatewayError if the gateway
    refuses or stays unavailable after retries.
    """
    payload = payload or {}
    items = snapshot_cart(payload.get("cartItems"))
    customer_info = payload.get("customerInfo")
    _validate_customer(customer_info)

    delivery_address = payload.get("deliveryAddress")
    payment_method = payload.get("paymentMethod") or "mobile_money"
    currency = current_app.config["PAYMENT_CURRENCY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    now = datetime.now(timezone.utc)
    order_id = generate_order_id(now)
    order_number = generate_order_number(now)
    total_amount = sum(item["price"] * item["quantity"] for item in items)
    idempotency_key = generate_idempotency_key(order_id, "checkout_session", now)

    urls = {
        "success_url": (
            f"{app_base_url}/payment/success"
            f"?session_id={{CHECKOUT_SESSION_ID}}&order_id={order_id}"
        ),
        "cancel_url": f"{app_base_url}/payment/cancel?order_id={order_id}",
        "webhook_url": f"{app_base_url}/payments/webhook",
    }
    metadata = {
        "orderNumber": order_number,
        "customerId": customer_id or customer_info.get("userId"),
        "itemCount": len(items),
        "paymentMethod": payment_method,
    }

    gateway = get_gateway()
    attempts = 1 + max(0, int(current_app.config.get("CHECKOUT_CREATE_RETRIES", 0)))
    for attempt in range(1, attempts + 1):
        try:
            session = gateway.create_checkout_session(
                line_items=items,
                order_id=order_id,
                customer_info=customer_info,
                urls=urls,
                description=f"TokFlo Store - Order {order_number} ({len(items)} items)",
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
            break
        except GatewayError as e:
            if not e.is_retryable or attempt == attempts:
                raise
            logger.warning(
                f"Checkout session attempt {attempt} for {order_id} failed, retrying: {e}"
            )

    try:
        order = create_order(
            order_id=order_id,
            order_number=order_number,
            items=items,
            total_amount=total_amount,
            currency=session.get("currency") or currency,
            customer_info=customer_info,
            delivery_address=delivery_address,
            customer_id=customer_id or customer_info.get("userId"),
            payment_method=payment_method,
            checkout_session_id=session["session_id"],
            checkout_url=session["checkout_url"],
            idempotency_key=idempotency_key,
            expires_at=parse_gateway_timestamp(session.get("expires_at")),
        )
    except Exception:
        db.session.rollback()
        # The session is live on the gateway; it will expire unpaid
        logger.critical(
            f"Checkout session {session['session_id']} was created for order "
            f"{order_id} but the order could not be saved",
            exc_info=True,
        )
        raise

    logger.info(
        f"Checkout session {session['session_id']} created for order {order_id} "
        f"({len(items)} items, total {total_amount})"
    )
    return order

