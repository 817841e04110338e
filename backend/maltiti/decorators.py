# Overview: Request identity decorators and the shared JSON error handlers for blueprints.

"""
Caller identity

Authentication happens upstream. The gateway in front of this service
forwards the verified caller as headers:

- X-User-Id:    registered user id (absent for guests)
- X-User-Role:  "customer" or "admin"
- X-Session-Id: guest cart session

The decorators copy them onto flask.g (g.user_id, g.user_role, g.session_id)
and reject requests that lack the identity a route needs.
"""

from functools import wraps

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import OrderError
from .models import ROLE_ADMIN


def _load_identity() -> None:
    g.user_id = (request.headers.get("X-User-Id") or "").strip() or None
    g.user_role = (request.headers.get("X-User-Role") or "").strip().lower() or None
    g.session_id = (request.headers.get("X-Session-Id") or "").strip() or None


def with_identity(f):
    """Load whatever identity the caller sent; guests and users both pass."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _load_identity()
        return f(*args, **kwargs)
    return decorated_function


def require_user(f):
    """Require a registered user (X-User-Id)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _load_identity()
        if not g.user_id:
            return jsonify({"error": "Authentication required", "code": "unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Require a registered user with the admin role."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _load_identity()
        if not g.user_id:
            return jsonify({"error": "Authentication required", "code": "unauthorized"}), 401
        if g.user_role != ROLE_ADMIN:
            return jsonify({"error": "Admin access required", "code": "forbidden"}), 403
        return f(*args, **kwargs)
    return decorated_function


def register_error_handlers(bp) -> None:
    """
    Render typed service errors as JSON for every route of a blueprint.

    OrderError -> its own status and {"error", "code", "details"} body.
    Anything else is logged with a stack trace and answered 500.
    """
    @bp.errorhandler(OrderError)
    def handle_order_error(err: OrderError):
        return jsonify(err.to_dict()), err.status_code

    @bp.errorhandler(Exception)
    def handle_unexpected(err: Exception):
        if isinstance(err, HTTPException):
            return jsonify({"error": err.description, "code": err.name.lower().replace(" ", "_")}), err.code
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "code": "internal"}), 500
