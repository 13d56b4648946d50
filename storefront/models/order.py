"""Order models.

- Order: one checkout. `status` is the canonical order status and is only
  ever written by the reconciliation service. `version_id` gives every
  write optimistic-concurrency protection: a flush against a row that
  changed since it was loaded raises StaleDataError instead of silently
  overwriting.
- OrderItem: the cart snapshot taken at checkout. Prices are integer minor
  units and never change after creation.
"""

from sqlalchemy.orm import validates

from storefront.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    # -- Canonical statuses --
    PENDING_PAYMENT = "pending_payment"
    PROCESSING_PAYMENT = "processing_payment"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    STATUSES = [
        PENDING_PAYMENT,
        PROCESSING_PAYMENT,
        PAID,
        PAYMENT_FAILED,
        CANCELLED,
        EXPIRED,
    ]
    TERMINAL_STATUSES = (PAID, PAYMENT_FAILED, CANCELLED, EXPIRED)

    id = db.Column(db.String(64), primary_key=True)  # order_<millis>_<rand>
    order_number = db.Column(db.String(32), nullable=False)  # TF-12345678
    customer_id = db.Column(
        db.String(128), nullable=True, index=True
    )  # identity provider uid; buyers need not have a local users row
    customer_info = db.Column(db.JSON, default=dict)  # name, email, phone
    delivery_address = db.Column(db.JSON, nullable=True)
    payment_method = db.Column(db.String(50), default="mobile_money")

    total_amount = db.Column(db.Integer, nullable=False)  # minor units
    currency = db.Column(db.String(3), nullable=False, default="SLE")

    status = db.Column(
        db.String(50), nullable=False, default=PENDING_PAYMENT, index=True
    )  # see STATUSES
    payment_status = db.Column(
        db.String(50), nullable=False, default="pending"
    )  # last raw gateway status, audit only
    session_status = db.Column(db.String(50), nullable=True)
    checkout_session_id = db.Column(db.String(255), unique=True, nullable=True)
    checkout_url = db.Column(db.String(1000), nullable=True)
    idempotency_key = db.Column(db.String(255), nullable=True)
    payment_details = db.Column(db.JSON, nullable=True)  # last raw details snapshot
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    # --- Relationships ---
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @validates("checkout_session_id")
    def _bind_session_once(self, key, value):
        if self.checkout_session_id and value != self.checkout_session_id:
            raise ValueError(
                f"Order {self.id} is already bound to session {self.checkout_session_id}"
            )
        return value

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def seller_ids(self):
        """Distinct sellers in cart order."""
        seen = []
        for item in self.items:
            if item.seller_id not in seen:
                seen.append(item.seller_id)
        return seen

    def __repr__(self):
        return f"<Order {self.id} ({self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.String(64), db.ForeignKey("orders.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False)  # index in the cart
    product_id = db.Column(db.String(128), nullable=True)
    seller_id = db.Column(db.String(128), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Integer, nullable=False)  # unit price, minor units
    quantity = db.Column(db.Integer, nullable=False)

    # --- Relationships ---
    order = db.relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.price * self.quantity

    def __repr__(self):
        return f"<OrderItem {self.product_id} x{self.quantity}>"
