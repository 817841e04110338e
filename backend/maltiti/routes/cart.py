# Overview: Flask API routes for cart operations; parses input and returns JSON responses.

# backend/maltiti/routes/cart.py
"""
Cart API Routes

Registered users are identified by X-User-Id, guests by X-Session-Id. A
request carrying both acts on the user's cart.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import register_error_handlers, require_user, with_identity
from ..services import cart_service
from ..services.cart_service import CartOwner


cart_bp = Blueprint("cart", __name__, url_prefix="/cart")
register_error_handlers(cart_bp)


def _owner() -> CartOwner:
    return CartOwner(user_id=g.user_id, session_id=g.session_id)


@cart_bp.get("")
@with_identity
def get_cart_route():
    return jsonify(cart_service.get_cart(_owner())), 200


@cart_bp.post("")
@with_identity
def add_to_cart_route():
    """
    Request body:
    {
        "product_id": "uuid",
        "quantity": 2  (optional, default 1)
    }
    """
    data = request.get_json(silent=True) or {}
    line = cart_service.add_to_cart(_owner(), data.get("product_id"), data.get("quantity"))
    return jsonify({"item": line.to_dict()}), 201


@cart_bp.post("/bulk")
@with_identity
def bulk_add_route():
    """
    Request body:
    {
        "items": [{"product_id": "uuid", "quantity": 1}, ...]
    }

    Items that fail validation are returned in skipped_items.
    """
    data = request.get_json(silent=True) or {}
    result = cart_service.bulk_add_to_cart(_owner(), data.get("items"))
    return jsonify(result), 201


@cart_bp.patch("/<cart_id>")
@with_identity
def update_quantity_route(cart_id: str):
    data = request.get_json(silent=True) or {}
    return jsonify(cart_service.update_quantity(_owner(), cart_id, data.get("quantity"))), 200


@cart_bp.delete("/<cart_id>")
@with_identity
def remove_item_route(cart_id: str):
    cart_service.remove_from_cart(_owner(), cart_id)
    return jsonify(cart_service.get_cart(_owner())), 200


@cart_bp.delete("")
@with_identity
def clear_cart_route():
    removed = cart_service.clear_cart(_owner())
    return jsonify({"removed_count": removed}), 200


@cart_bp.post("/sync")
@require_user
def sync_guest_cart_route():
    """
    Merge the guest cart of a session into the logged-in user's cart.

    Request body (or X-Session-Id header):
    {
        "session_id": "guest-session"
    }
    """
    data = request.get_json(silent=True) or {}
    session_id = data.get("session_id") or g.session_id
    result = cart_service.sync_guest_cart_with_user(g.user_id, session_id)
    return jsonify(result), 200
