"""Webhook event model (append-only audit log).

Every signature-verified webhook from the gateway is recorded here before
it is processed. Rows are never updated or deleted, and reconciliation
never reads them back: they exist for replay and debugging only.
"""

import uuid

from sqlalchemy import event

from storefront.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event = db.Column(
        db.String(100), nullable=False, index=True
    )  # e.g. "checkout_session.completed"
    data = db.Column(db.JSON, default=dict)
    signature = db.Column(db.String(255), nullable=False)
    source = db.Column(db.String(50), default="monime", nullable=False)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.event}>"


@event.listens_for(WebhookEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise RuntimeError("webhook_events is append-only")


@event.listens_for(WebhookEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise RuntimeError("webhook_events is append-only")
