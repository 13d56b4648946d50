"""Audit event model.

Logs one row per payment side effect (order paid, status changes, payouts)
for support and debugging.
"""

import uuid

from storefront.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(64), db.ForeignKey("orders.id"), nullable=True, index=True
    )
    actor_user_id = db.Column(
        db.String(128), db.ForeignKey("users.id"), nullable=True
    )  # None for gateway-initiated events
    action = db.Column(db.String(255), nullable=False)  # e.g. "order.paid"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid SQLAlchemy's reserved attribute
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
