"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import current_app, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit — we apply per-route
    storage_uri="memory://",
)


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the caller from the identity provider's trusted header.

    Authentication itself happens upstream; we only map the opaque user id
    onto a local User row. Imports lazily to avoid circular deps.
    """
    from storefront.models.user import User

    user_id = request.headers.get(current_app.config["IDENTITY_HEADER"])
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


@login_manager.unauthorized_handler
def unauthorized():
    """JSON API — no login page to redirect to."""
    return jsonify({"error": "UNAUTHORIZED", "message": "Authentication required"}), 401
