# Overview: Converts an open cart into Sale + Checkout, optionally starting payment.

"""
Checkout transaction

WHY: Cart claim, customer upsert, sale creation and (for pay-now) the
gateway reference must land together or not at all. Everything below runs in
one unit of work; a gateway failure rolls all of it back and the cart stays
open for another attempt.

Steps:
1. Lock the actor's open cart lines (EmptyCart if none).
2. Find-or-create the Customer and overwrite its delivery address.
3. Delivery cost from the per-box table (None = costed later by an admin).
4. Sale with one unallocated line item per cart line, priced at retail.
5. Checkout wrapping the sale; cart lines are claimed by it.
6. Pay-now only: initialize the gateway and store the reference.
7. Commit, then notify the buyer and the admins (best-effort).

Payment status on creation:
- delivery not costed       -> awaiting_delivery (gateway never called)
- place order               -> invoice_requested
- pay now                   -> pending_payment
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..errors import EmptyCart, InvalidStateError, ValidationError
from ..ids import new_id
from ..models import Checkout, LineItem, Sale
from ..models.sales import (
    ORDER_CANCELLED,
    ORDER_PENDING,
    PAYMENT_AWAITING_DELIVERY,
    PAYMENT_INVOICE_REQUESTED,
    PAYMENT_PENDING,
    UNPAID_STATUSES,
)
from ..extensions import db
from . import customer_service, delivery_cost_service
from .cart_service import CartOwner, open_lines
from .concurrency import run_with_retry, unit_of_work
from .notification_service import (
    TEMPLATE_ADMIN_NEW_ORDER,
    TEMPLATE_ORDER_PLACED,
    notify_admins,
    notify_safely,
)
from .order_tracking_service import load_checkout, require_email_owner, require_user_owner
from .payment_gateway import InitializeResult, generate_payment_reference, get_gateway
from .sale_service import notification_context, subtotal, tracking_url

logger = logging.getLogger(__name__)

AWAITING_DELIVERY_MESSAGE = (
    "Order created successfully. Delivery fee will be calculated and you will be notified via email."
)

_ADDRESS_FIELDS = ("country", "region", "city")


@dataclass
class CheckoutResult:
    checkout: Checkout
    payment: InitializeResult | None = None

    @property
    def awaiting_delivery(self) -> bool:
        return self.checkout.sale.payment_status == PAYMENT_AWAITING_DELIVERY

    def to_dict(self) -> dict:
        data = {
            "checkout": self.checkout.to_dict(),
            "awaiting_delivery": self.awaiting_delivery,
            "payment": self.payment.to_dict() if self.payment else None,
        }
        if self.awaiting_delivery:
            data["message"] = AWAITING_DELIVERY_MESSAGE
        return data


def _require_address(data: dict) -> None:
    missing = [name for name in _ADDRESS_FIELDS if not data.get(name)]
    if missing:
        raise ValidationError("Missing delivery address fields", details={"missing": missing})


def _require_guest_fields(data: dict) -> None:
    missing = [name for name in ("session_id", "email", "name") if not data.get(name)]
    if missing:
        raise ValidationError("Missing guest checkout fields", details={"missing": missing})


def _claim_open_cart(session, owner: CartOwner):
    carts = open_lines(session, owner, lock=True)
    if not carts:
        raise EmptyCart("No items in cart to checkout")
    return carts


def _start_payment(sale: Sale, checkout: Checkout, email: str) -> InitializeResult:
    """Gateway initialize for the sale total; records the reference on both rows."""
    reference = generate_payment_reference(sale.id)
    callback = current_app.config.get("PAYMENT_CALLBACK_URL") or tracking_url(sale)
    result = get_gateway().initialize(sale.total_amount, email, reference, callback_url=callback)
    sale.payment_reference = result.reference
    checkout.payment_reference = result.reference
    sale.payment_status = PAYMENT_PENDING
    return result


def _run_checkout(owner: CartOwner, data: dict, *, pay_now: bool, guest_email: str | None = None) -> CheckoutResult:
    _require_address(data)

    def _op():
        with unit_of_work() as session:
            carts = _claim_open_cart(session, owner)

            if owner.user_id:
                customer = customer_service.find_or_create_for_user(session, owner.user_id, data)
            else:
                customer = customer_service.find_or_create_guest(session, data)

            delivery_fee = delivery_cost_service.cost_for_carts(
                carts, data.get("country"), data.get("city"), data.get("region")
            )

            items = [
                LineItem(
                    product_id=cart.product_id,
                    requested_quantity=cart.quantity,
                    final_price=Decimal(cart.product.retail),
                )
                for cart in carts
            ]

            sale = Sale(
                id=new_id(),
                customer_id=customer.id,
                order_status=ORDER_PENDING,
                payment_status=PAYMENT_AWAITING_DELIVERY if delivery_fee is None else PAYMENT_INVOICE_REQUESTED,
                amount=subtotal(items),
                delivery_fee=delivery_fee,
            )
            sale.set_line_items(items)
            session.add(sale)

            checkout = Checkout(
                id=new_id(),
                sale=sale,
                amount=sale.total_amount if delivery_fee is not None else None,
                guest_email=guest_email,
            )
            session.add(checkout)
            session.flush()

            for cart in carts:
                cart.checkout_id = checkout.id

            payment = None
            if pay_now and delivery_fee is not None:
                email = guest_email or customer.contact_email
                payment = _start_payment(sale, checkout, email)
        return CheckoutResult(checkout=checkout, payment=payment)

    result = run_with_retry(_op)
    logger.info(
        "Checkout %s created for sale %s (payment %s)",
        result.checkout.id, result.checkout.sale_id, result.checkout.sale.payment_status,
    )
    _notify_order_placed(result, guest=owner.is_guest)
    return result


def _notify_order_placed(result: CheckoutResult, *, guest: bool) -> None:
    sale = result.checkout.sale
    context = notification_context(sale)
    context["customer_type"] = "Guest" if guest else "Registered User"

    if result.awaiting_delivery:
        context["next_step"] = "We will email you once the delivery fee has been calculated."
    elif result.payment is None:
        context["next_step"] = (
            "You can make payment later using the order tracking link sent to your email."
            if guest
            else "You can make payment later from your dashboard."
        )
    else:
        context["next_step"] = "Complete your payment to start processing."

    notify_safely(TEMPLATE_ORDER_PLACED, sale.contact_email, "Order Placed", context)
    subject = "New Guest Order Received" if guest else "New Order Received"
    notify_admins(TEMPLATE_ADMIN_NEW_ORDER, subject, context)


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def initialize_transaction(user_id: str, data: dict) -> CheckoutResult:
    """Registered buyer, pay now."""
    return _run_checkout(CartOwner(user_id=user_id), data, pay_now=True)


def place_order(user_id: str, data: dict) -> CheckoutResult:
    """Registered buyer, invoice now and pay later."""
    return _run_checkout(CartOwner(user_id=user_id), data, pay_now=False)


def guest_initialize_transaction(data: dict) -> CheckoutResult:
    _require_guest_fields(data)
    owner = CartOwner(session_id=data["session_id"])
    return _run_checkout(owner, data, pay_now=True, guest_email=data["email"].strip())


def guest_place_order(data: dict) -> CheckoutResult:
    _require_guest_fields(data)
    owner = CartOwner(session_id=data["session_id"])
    return _run_checkout(owner, data, pay_now=False, guest_email=data["email"].strip())


def _pay_existing(checkout_id: str, authorize, email_for) -> InitializeResult:
    def _op():
        with unit_of_work() as session:
            checkout = load_checkout(session, checkout_id)
            sale = checkout.sale
            authorize(sale)

            if sale.order_status == ORDER_CANCELLED:
                raise InvalidStateError("Cannot pay for a cancelled order")
            if sale.payment_status not in UNPAID_STATUSES:
                raise InvalidStateError(
                    f"Cannot pay for order with payment status: {sale.payment_status}",
                    details={"payment_status": sale.payment_status},
                )
            if sale.payment_status == PAYMENT_AWAITING_DELIVERY:
                raise InvalidStateError(
                    "Cannot process payment while awaiting delivery fee calculation. "
                    "Please wait for admin to update the delivery cost."
                )
            result = _start_payment(sale, checkout, email_for(sale))
        return result

    return run_with_retry(_op)


def pay_for_order(user_id: str, checkout_id: str) -> InitializeResult:
    return _pay_existing(
        checkout_id,
        authorize=lambda sale: require_user_owner(sale, user_id),
        email_for=lambda sale: sale.contact_email,
    )


def pay_for_guest_order(checkout_id: str, email: str) -> InitializeResult:
    return _pay_existing(
        checkout_id,
        authorize=lambda sale: require_email_owner(sale, email),
        email_for=lambda sale: sale.contact_email or email,
    )


def get_delivery_cost(owner: CartOwner, data: dict) -> Decimal | None:
    """Quote for the owner's open cart; None means the fee is set later."""
    _require_address(data)
    carts = open_lines(db.session, owner)
    if not carts:
        raise EmptyCart("No items in cart to checkout")
    return delivery_cost_service.cost_for_carts(
        carts, data.get("country"), data.get("city"), data.get("region")
    )
