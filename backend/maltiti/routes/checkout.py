# Overview: Flask API routes for checkout, payment and Paystack webhooks.

# backend/maltiti/routes/checkout.py
"""
Checkout API Routes

DESIGN:
- Registered buyers (X-User-Id) and guests (X-Session-Id + email) check out
  their open cart either as "pay now" (gateway initialize) or "place order"
  (invoice now, pay later).
- Orders whose delivery fee cannot be priced automatically are created as
  awaiting_delivery; payment is refused until an admin sets the fee.
- Payment completion arrives by webhook, by the client polling
  confirm-payment, or both; reconciliation is idempotent.

SECURITY:
- The webhook is authenticated by the x-paystack-signature HMAC, checked on
  the raw body before anything is parsed.
- Guest order access requires the email used at checkout.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import register_error_handlers, require_user, with_identity
from ..errors import OrderError
from ..services import checkout_service, payment_reconciler
from ..services.cart_service import CartOwner


checkout_bp = Blueprint("checkout", __name__, url_prefix="/checkout")
register_error_handlers(checkout_bp)


def _body() -> dict:
    return request.get_json(silent=True) or {}


# =============================================================================
# QUOTE
# =============================================================================

@checkout_bp.post("/delivery-cost")
@with_identity
def delivery_cost_route():
    """
    Delivery fee for the caller's open cart.

    Request body:
    {
        "country": "Ghana",
        "region": "Northern",
        "city": "Tamale"
    }

    Returns delivery_cost null when the fee will be set by an admin later.
    """
    owner = CartOwner(user_id=g.user_id, session_id=g.session_id)
    cost = checkout_service.get_delivery_cost(owner, _body())
    return jsonify({
        "delivery_cost": str(cost) if cost is not None else None,
        "awaiting_delivery": cost is None,
    }), 200


# =============================================================================
# REGISTERED CHECKOUT
# =============================================================================

@checkout_bp.post("/initialize-transaction")
@require_user
def initialize_transaction_route():
    """
    Pay-now checkout for a registered buyer.

    Request body:
    {
        "country": "Ghana", "region": "Northern", "city": "Tamale",
        "phone_number": "+233...", "extra_info": "Near the market"  (optional)
    }

    Returns:
        201: checkout created; payment holds the authorization url
        400: empty cart / missing address
        502: payment provider failure (nothing was created)
    """
    result = checkout_service.initialize_transaction(g.user_id, _body())
    return jsonify(result.to_dict()), 201


@checkout_bp.post("/place-order")
@require_user
def place_order_route():
    result = checkout_service.place_order(g.user_id, _body())
    return jsonify(result.to_dict()), 201


@checkout_bp.post("/<checkout_id>/pay")
@require_user
def pay_for_order_route(checkout_id: str):
    payment = checkout_service.pay_for_order(g.user_id, checkout_id)
    return jsonify({"payment": payment.to_dict()}), 200


@checkout_bp.post("/confirm-payment/<sale_id>")
@require_user
def confirm_payment_route(sale_id: str):
    sale, result = payment_reconciler.confirm_payment(g.user_id, sale_id)
    return jsonify({"sale": sale.to_dict(), "result": result.to_dict()}), 200


# =============================================================================
# GUEST CHECKOUT
# =============================================================================

@checkout_bp.post("/guest/initialize-transaction")
def guest_initialize_transaction_route():
    """
    Pay-now checkout for a guest.

    Request body:
    {
        "session_id": "guest-session",
        "email": "buyer@example.com",
        "name": "Ama Mensah",
        "country": "Ghana", "region": "Northern", "city": "Tamale",
        "phone_number": "+233..."  (optional)
    }
    """
    result = checkout_service.guest_initialize_transaction(_body())
    return jsonify(result.to_dict()), 201


@checkout_bp.post("/guest/place-order")
def guest_place_order_route():
    result = checkout_service.guest_place_order(_body())
    return jsonify(result.to_dict()), 201


@checkout_bp.post("/guest/<checkout_id>/pay")
def guest_pay_for_order_route(checkout_id: str):
    payment = checkout_service.pay_for_guest_order(checkout_id, _body().get("email"))
    return jsonify({"payment": payment.to_dict()}), 200


@checkout_bp.post("/guest/confirm-payment/<sale_id>")
def guest_confirm_payment_route(sale_id: str):
    sale, result = payment_reconciler.confirm_guest_payment(sale_id, _body().get("email"))
    return jsonify({"sale": sale.to_dict(), "result": result.to_dict()}), 200


# =============================================================================
# WEBHOOK
# =============================================================================

@checkout_bp.post("/webhook")
def paystack_webhook_route():
    """
    Paystack event receiver.

    Returns:
        200: {"status": "ok"} for handled events, no-ops and events that
             could not be applied (logged for an operator to reconcile)
        401: missing or invalid signature
    """
    raw_body = request.get_data()
    signature = request.headers.get("x-paystack-signature")

    try:
        payment_reconciler.require_webhook_signature(
            raw_body, signature, current_app.config.get("PAYSTACK_SECRET_KEY")
        )
    except OrderError as e:
        return jsonify(e.to_dict()), e.status_code

    payload = request.get_json(force=True, silent=True)
    if not isinstance(payload, dict):
        current_app.logger.warning("Ignoring Paystack webhook with invalid payload")
        return jsonify({"status": "ok"}), 200

    try:
        result = payment_reconciler.handle_webhook(payload)
        current_app.logger.info(
            "Paystack webhook %s -> %s (reference %s)",
            payload.get("event"), result.status, result.reference,
        )
    except OrderError as e:
        # Run `flask orders reconcile <reference>` once the cause is fixed
        current_app.logger.error(
            "Paystack webhook %s not applied: %s %s", payload.get("event"), e.message, e.details,
        )
    except Exception:
        current_app.logger.exception("Failed to process Paystack webhook")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"status": "ok"}), 200
