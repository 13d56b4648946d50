"""Order store — persistence helpers for order records.

Every write to an existing order goes through apply_order_update(), which
commits a single versioned UPDATE. If another request changed the row since
it was loaded, the UPDATE matches nothing, SQLAlchemy raises
StaleDataError, and the caller gets StaleOrderWrite and must re-read.
"""

import logging

from sqlalchemy.orm.exc import StaleDataError

from storefront.extensions import db
from storefront.models.order import Order, OrderItem

logger = logging.getLogger(__name__)


class StaleOrderWrite(Exception):
    """The order changed between read and write."""

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} was modified concurrently")


def get_order(order_id, refresh=False):
    """Load an order by id. Returns None if it doesn't exist.

    refresh=True bypasses the session identity map so the caller sees what
    is actually committed.
    """
    if refresh:
        return db.session.get(Order, order_id, populate_existing=True)
    return db.session.get(Order, order_id)


def get_order_by_session(checkout_session_id):
    """Load the order bound to a gateway checkout session."""
    if not checkout_session_id:
        return None
    return Order.query.filter_by(checkout_session_id=checkout_session_id).first()


def create_order(order_id, order_number, items, total_amount, currency,
                 customer_info, delivery_address=None, customer_id=None,
                 payment_method="mobile_money", checkout_session_id=None,
                 checkout_url=None, idempotency_key=None, expires_at=None):
    """Insert a new order with its cart snapshot and commit.

    `items` are dicts with product_id, seller_id, name, price (minor units)
    and quantity, in cart order.
    """
    order = Order(
        id=order_id,
        order_number=order_number,
        customer_id=customer_id,
        customer_info=customer_info,
        delivery_address=delivery_address,
        payment_method=payment_method,
        total_amount=total_amount,
        currency=currency,
        status=Order.PENDING_PAYMENT,
        payment_status="pending",
        session_status="pending",
        checkout_session_id=checkout_session_id,
        checkout_url=checkout_url,
        idempotency_key=idempotency_key,
        expires_at=expires_at,
    )
    for position, item in enumerate(items):
        order.items.append(OrderItem(
            position=position,
            product_id=item.get("product_id"),
            seller_id=item["seller_id"],
            name=item.get("name"),
            price=item["price"],
            quantity=item["quantity"],
        ))
    db.session.add(order)
    db.session.commit()
    return order


def apply_order_update(order, fields):
    """Write `fields` onto `order` as one conditional commit.

    Raises StaleOrderWrite (after rolling back) when the stored version no
    longer matches the version the order was loaded with.
    """
    for name, value in fields.items():
        setattr(order, name, value)
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.info(f"Conditional write lost for order {order.id}, caller will retry")
        raise StaleOrderWrite(order.id)
    return order


def orders_with_status(statuses, created_before=None):
    """Orders whose canonical status is in `statuses`, oldest first."""
    if isinstance(statuses, str):
        statuses = [statuses]
    query = Order.query.filter(Order.status.in_(statuses))
    if created_before is not None:
        query = query.filter(Order.created_at < created_before)
    return query.order_by(Order.created_at.asc()).all()


def orders_for_seller(seller_id, status=None):
    """Orders containing at least one item sold by `seller_id`."""
    query = (
        Order.query
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(OrderItem.seller_id == seller_id)
    )
    if status is not None:
        query = query.filter(Order.status == status)
    return query.distinct().order_by(Order.created_at.desc()).all()
