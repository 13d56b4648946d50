"""
Custom route decorators for access control.

- seller_self_required: caller is authenticated AND the `sellerId` in the
  JSON body is the caller's own id.
"""

from functools import wraps

from flask import abort, request
from flask_login import current_user, login_required


def seller_self_required(f):
    """Require login + acting on the caller's own seller account."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        data = request.get_json(silent=True) or {}
        seller_id = data.get("sellerId")
        if seller_id and seller_id != current_user.id:
            abort(403)
        return f(*args, **kwargs)

    return decorated
