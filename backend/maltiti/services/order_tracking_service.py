# Overview: Order lookups for buyers; ownership checks by user id or email.

"""
Order tracking

Guests prove ownership of an order with its contact email: the checkout's
guest_email when set, otherwise the customer's email. A mismatch is Forbidden
so that a guessed order id reveals nothing about someone else's order.
"""

from __future__ import annotations

from ..errors import CheckoutNotFound, ForbiddenError, ValidationError
from ..extensions import db
from ..models import Checkout, Customer, Sale
from .sale_service import load_sale


def _norm(email: str | None) -> str:
    return (email or "").strip().lower()


def email_owns_sale(sale: Sale, email: str | None) -> bool:
    """Compared against the one contact email: guest email first, then the customer's."""
    wanted = _norm(email)
    return bool(wanted) and wanted == _norm(sale.contact_email)


def require_email_owner(sale: Sale, email: str | None) -> None:
    if not email:
        raise ValidationError("email required")
    if not email_owns_sale(sale, email):
        raise ForbiddenError("Email does not match order records")


def require_user_owner(sale: Sale, user_id: str) -> None:
    if sale.customer is None or sale.customer.user_id != user_id:
        raise ForbiddenError("You are not authorized to access this order")


def load_checkout(session, checkout_id: str) -> Checkout:
    checkout = (
        session.query(Checkout)
        .filter(Checkout.id == checkout_id, Checkout.deleted_at.is_(None))
        .first()
    )
    if checkout is None or checkout.sale is None or checkout.sale.deleted_at is not None:
        raise CheckoutNotFound("Checkout not found", details={"checkout_id": checkout_id})
    return checkout


def track_order(sale_id: str, email: str) -> Sale:
    sale = load_sale(db.session, sale_id)
    require_email_owner(sale, email)
    return sale


def list_user_orders(user_id: str) -> list[Checkout]:
    return (
        db.session.query(Checkout)
        .join(Sale, Checkout.sale_id == Sale.id)
        .join(Customer, Sale.customer_id == Customer.id)
        .filter(Customer.user_id == user_id, Sale.deleted_at.is_(None))
        .order_by(Checkout.created_at.desc())
        .all()
    )


def get_user_order(user_id: str, checkout_id: str) -> Checkout:
    checkout = load_checkout(db.session, checkout_id)
    require_user_owner(checkout.sale, user_id)
    return checkout
