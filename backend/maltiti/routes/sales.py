# Overview: Flask API routes for sale administration and cancellation.

# backend/maltiti/routes/sales.py
"""
Sales API Routes

WHY: Admins fulfil orders by hand: they assign stock batches to each line
item, move the order through its statuses and price delivery when the
checkout could not. Buyers may cancel while the order is still pending or
packaging.

SECURITY:
- Every route except customer-cancel and confirm-delivery requires the
  admin role.
- Buyer routes require the email used at checkout.
"""

from flask import Blueprint, jsonify, request

from ..decorators import register_error_handlers, require_admin
from ..services import cancellation_service, order_tracking_service, sale_service


sales_bp = Blueprint("sales", __name__, url_prefix="/sales")
register_error_handlers(sales_bp)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# =============================================================================
# QUERIES
# =============================================================================

@sales_bp.get("")
@require_admin
def list_sales_route():
    """
    Query params:
    - order_status, payment_status: exact filters
    - customer_id or customer_name (substring match)
    - page (default 1), limit (default 10, max 100)
    """
    args = request.args
    result = sale_service.list_sales(
        order_status=args.get("order_status"),
        payment_status=args.get("payment_status"),
        customer_id=args.get("customer_id"),
        customer_name=args.get("customer_name"),
        page=args.get("page", 1, type=int),
        limit=args.get("limit", 10, type=int),
    )
    return jsonify(result), 200


@sales_bp.get("/<sale_id>")
@require_admin
def get_sale_route(sale_id: str):
    return jsonify({"sale": sale_service.get_sale(sale_id).to_dict()}), 200


# =============================================================================
# EDITING
# =============================================================================

@sales_bp.post("")
@require_admin
def create_sale_route():
    """
    Request body:
    {
        "customer_id": "uuid",
        "order_status": "pending",              (optional)
        "payment_status": "invoice_requested",  (optional)
        "line_items": [
            {
                "product_id": "uuid",
                "requested_quantity": 5,
                "batch_allocations": [{"batch_id": "uuid", "quantity": 5}],
                "custom_price": "18.50"  (optional)
            }
        ]
    }
    """
    sale = sale_service.create_sale(_body())
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.post("/<sale_id>/line-items")
@require_admin
def add_line_item_route(sale_id: str):
    sale = sale_service.add_line_item(sale_id, _body())
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.put("/<sale_id>/line-items")
@require_admin
def update_line_items_route(sale_id: str):
    sale = sale_service.update_line_items(sale_id, _body().get("line_items"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.put("/<sale_id>/batches")
@require_admin
def assign_batches_route(sale_id: str):
    """
    Request body:
    {
        "product_id": "uuid",
        "batch_allocations": [{"batch_id": "uuid", "quantity": 3}]
    }
    """
    data = _body()
    sale = sale_service.assign_batches(sale_id, data.get("product_id"), data.get("batch_allocations"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.put("/<sale_id>/status")
@require_admin
def update_status_route(sale_id: str):
    data = _body()
    sale = sale_service.update_status(
        sale_id,
        order_status=data.get("order_status"),
        payment_status=data.get("payment_status"),
    )
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.patch("/<sale_id>/delivery-cost")
@require_admin
def update_delivery_cost_route(sale_id: str):
    sale = sale_service.update_delivery_cost(sale_id, _body().get("delivery_cost"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.delete("/<sale_id>")
@require_admin
def delete_sale_route(sale_id: str):
    sale_service.soft_delete_sale(sale_id)
    return jsonify({"deleted": True, "sale_id": sale_id}), 200


# =============================================================================
# CANCELLATION / DELIVERY
# =============================================================================

@sales_bp.post("/<sale_id>/cancel-by-admin")
@require_admin
def cancel_by_admin_route(sale_id: str):
    """
    Request body:
    {
        "waive_penalty": false,  (optional)
        "reason": "Out of stock"  (optional)
    }
    """
    data = _body()
    result = cancellation_service.cancel_sale_by_admin(
        sale_id,
        waive_penalty=bool(data.get("waive_penalty")),
        reason=data.get("reason"),
    )
    return jsonify(result.to_dict()), 200


@sales_bp.post("/<sale_id>/customer-cancel")
def customer_cancel_route(sale_id: str):
    """
    Request body:
    {
        "email": "buyer@example.com",
        "reason": "Ordered by mistake"  (optional)
    }
    """
    data = _body()
    result = cancellation_service.cancel_sale_by_customer(sale_id, data.get("email"), reason=data.get("reason"))
    return jsonify(result.to_dict()), 200


@sales_bp.patch("/<sale_id>/confirm-delivery")
def confirm_delivery_route(sale_id: str):
    data = _body()
    order_tracking_service.track_order(sale_id, data.get("email"))
    sale = sale_service.confirm_delivery(sale_id, bool(data.get("confirmed")))
    return jsonify({"sale": sale.to_dict()}), 200
