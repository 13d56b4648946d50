"""User model.

Local mirror of an identity from the external identity provider. The
provider's opaque user id is used as the primary key; no credentials are
stored here. Flask-Login integration via UserMixin.
"""

from flask_login import UserMixin

from storefront.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(128), primary_key=True)  # identity provider uid
    email = db.Column(db.String(255), unique=True, nullable=True)
    display_name = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    has_store = db.Column(db.Boolean, default=False)  # seller with an active store
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    payouts = db.relationship("Payout", back_populates="seller", lazy="dynamic")

    def __repr__(self):
        return f"<User {self.id}>"
