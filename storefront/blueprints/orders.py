"""Orders blueprint — /orders/<order_id>

Read-only order view for the payment status and order confirmation pages.
Reads the stored record only; it never contacts the gateway.
"""

from flask import Blueprint, jsonify
from flask_login import current_user

from storefront.errors import OrderNotFound
from storefront.services.money import to_major_float
from storefront.services.order_store import get_order

orders_bp = Blueprint("orders", __name__, url_prefix="/orders")


@orders_bp.route("/<order_id>")
def order_detail(order_id):
    """Order snapshot without payment tokens or gateway references.

    Buyer contact details and the delivery address are only included for
    the authenticated buyer.
    """
    order = get_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)

    body = {
        "success": True,
        "id": order.id,
        "orderNumber": order.order_number,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "sessionStatus": order.session_status,
        "checkoutSessionId": order.checkout_session_id,
        "totalAmount": to_major_float(order.total_amount),
        "currency": order.currency,
        "paidAt": order.paid_at.isoformat() if order.paid_at else None,
        "cartItems": [
            {
                "productId": item.product_id,
                "sellerId": item.seller_id,
                "name": item.name,
                "price": to_major_float(item.price),
                "quantity": item.quantity,
            }
            for item in order.items
        ],
        "paymentDetails": {
            "method": order.payment_method,
            "status": order.payment_status,
        },
    }

    is_buyer = (
        current_user.is_authenticated
        and order.customer_id is not None
        and current_user.id == order.customer_id
    )
    if is_buyer:
        body["customerInfo"] = order.customer_info
        body["deliveryAddress"] = order.delivery_address

    return jsonify(body)
