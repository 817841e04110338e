# Overview: Flask API routes for buyers looking up their orders.

# backend/maltiti/routes/orders.py
from flask import Blueprint, g, jsonify, request

from ..decorators import register_error_handlers, require_user
from ..services import order_tracking_service


orders_bp = Blueprint("orders", __name__, url_prefix="/orders")
register_error_handlers(orders_bp)


@orders_bp.post("/track")
def track_order_route():
    """
    Guest order tracking.

    Request body:
    {
        "sale_id": "uuid",
        "email": "buyer@example.com"
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("sale_id"):
        return jsonify({"error": "sale_id required", "code": "validation_error"}), 400
    sale = order_tracking_service.track_order(data["sale_id"], data.get("email"))
    return jsonify({"sale": sale.to_dict()}), 200


@orders_bp.get("")
@require_user
def list_user_orders_route():
    checkouts = order_tracking_service.list_user_orders(g.user_id)
    return jsonify({"orders": [checkout.to_dict() for checkout in checkouts]}), 200


@orders_bp.get("/<checkout_id>")
@require_user
def get_user_order_route(checkout_id: str):
    checkout = order_tracking_service.get_user_order(g.user_id, checkout_id)
    return jsonify({"order": checkout.to_dict()}), 200
