"""Payout model.

A seller withdrawal. Rows are created only after the gateway accepted the
payout, and then only move forward: pending -> completed | failed.
Both pending and completed payouts reserve funds against the seller's
balance.
"""

from storefront.extensions import db


class Payout(db.Model):
    __tablename__ = "payouts"

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    STATUSES = [PENDING, COMPLETED, FAILED]
    RESERVING_STATUSES = (PENDING, COMPLETED)

    id = db.Column(db.String(128), primary_key=True)  # payout_<seller>_<millis>_<rand>
    gateway_payout_id = db.Column(db.String(255), unique=True, nullable=True)
    seller_id = db.Column(
        db.String(128), db.ForeignKey("users.id"), nullable=False, index=True
    )
    amount = db.Column(db.Integer, nullable=False)  # minor units
    currency = db.Column(db.String(3), nullable=False, default="SLE")
    payout_account = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default=PENDING
    )  # pending | completed | failed
    order_ids = db.Column(db.JSON, default=list)  # advisory attribution only
    gateway_response = db.Column(db.JSON, nullable=True)
    estimated_arrival = db.Column(db.String(100), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    seller = db.relationship("User", back_populates="payouts")

    def __repr__(self):
        return f"<Payout {self.id} ({self.status})>"
