# Overview: Open-cart management for registered users and guest sessions.

"""
Cart service

A cart line is open while checkout_id IS NULL. Lines belong to exactly one
owner: a user_id (registered buyer) or a session_id (guest). Adding a
product that is already in the open cart increases its quantity instead of
creating a second line.

Bulk add tolerates partial failure: every check of an item runs before its
write, so a bad item is reported back as skipped and the rest still land.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..errors import CartItemNotFound, ForbiddenError, OrderError, UnauthorizedError, ValidationError
from ..extensions import db
from ..models import Cart, User
from .concurrency import lock_for_update, unit_of_work
from .line_item_service import find_product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartOwner:
    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self):
        if not self.user_id and not self.session_id:
            raise UnauthorizedError("A user or guest session is required")

    @property
    def is_guest(self) -> bool:
        return not self.user_id

    def filter(self, query):
        if self.user_id:
            return query.filter(Cart.user_id == self.user_id)
        return query.filter(Cart.session_id == self.session_id, Cart.user_id.is_(None))


def _quantity(value, default: int | None = None) -> int:
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        raise ValidationError("quantity must be a positive integer")
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be a positive integer")
    if quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def open_lines_query(session, owner: CartOwner):
    return owner.filter(session.query(Cart)).filter(Cart.checkout_id.is_(None))


def open_lines(session, owner: CartOwner, *, lock: bool = False) -> list[Cart]:
    query = open_lines_query(session, owner).order_by(Cart.created_at, Cart.id)
    if lock:
        query = lock_for_update(query)
    return query.all()


def summarize(lines: list[Cart]) -> dict:
    total = sum((Decimal(line.product.retail) * line.quantity for line in lines), Decimal("0"))
    return {
        "items": [line.to_dict() for line in lines],
        "count": len(lines),
        "total": str(total.quantize(Decimal("0.01"))),
    }


def get_cart(owner: CartOwner) -> dict:
    return summarize(open_lines(db.session, owner))


def _add_line(session, owner: CartOwner, product_id: str, quantity: int) -> Cart:
    product = find_product(session, product_id)
    existing = open_lines_query(session, owner).filter(Cart.product_id == product.id).first()
    if existing is not None:
        existing.quantity += quantity
        session.flush()
        return existing

    line = Cart(
        user_id=owner.user_id,
        session_id=None if owner.user_id else owner.session_id,
        product_id=product.id,
        quantity=quantity,
    )
    session.add(line)
    session.flush()
    return line


def add_to_cart(owner: CartOwner, product_id: str, quantity=None) -> Cart:
    if not product_id:
        raise ValidationError("product id required")
    qty = _quantity(quantity, default=1)
    with unit_of_work() as session:
        line = _add_line(session, owner, str(product_id), qty)
    return line


def bulk_add_to_cart(owner: CartOwner, items: list[dict]) -> dict:
    """
    Add many products at once.

    Returns {"added_items": [...], "skipped_items": [product_id, ...]}.
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    added: list[Cart] = []
    skipped: list[str] = []

    with unit_of_work() as session:
        for item in items:
            product_id = str((item or {}).get("product_id") or "")
            try:
                qty = _quantity((item or {}).get("quantity"), default=1)
                if not product_id:
                    raise ValidationError("product_id required")
                line = _add_line(session, owner, product_id, qty)
            except OrderError as exc:
                logger.info("Skipping bulk cart item %s: %s", product_id or "<missing>", exc.message)
                skipped.append(product_id)
                continue
            if line not in added:
                added.append(line)

    return {
        "added_items": [line.to_dict() for line in added],
        "skipped_items": skipped,
    }


def _owned_open_line(session, owner: CartOwner, cart_id: str) -> Cart:
    line = (
        session.query(Cart)
        .filter(Cart.id == cart_id, Cart.checkout_id.is_(None))
        .first()
    )
    if line is None:
        raise CartItemNotFound("Cart item not found", details={"cart_id": cart_id})
    if owner.user_id:
        if line.user_id != owner.user_id:
            raise ForbiddenError("You are not authorized to change this cart item")
    elif line.user_id is not None or line.session_id != owner.session_id:
        # Guests never learn about other sessions' lines
        raise CartItemNotFound("Cart item not found", details={"cart_id": cart_id})
    return line


def update_quantity(owner: CartOwner, cart_id: str, quantity) -> dict:
    qty = _quantity(quantity)
    with unit_of_work() as session:
        line = _owned_open_line(session, owner, cart_id)
        line.quantity = qty
    return get_cart(owner)


def remove_from_cart(owner: CartOwner, cart_id: str) -> None:
    with unit_of_work() as session:
        line = _owned_open_line(session, owner, cart_id)
        session.delete(line)


def clear_cart(owner: CartOwner) -> int:
    """Delete every open line; lines claimed by a checkout stay."""
    with unit_of_work() as session:
        lines = open_lines(session, owner)
        for line in lines:
            session.delete(line)
    return len(lines)


def sync_guest_cart_with_user(user_id: str, session_id: str) -> dict:
    """
    Merge a guest session's open cart into the user's cart after login.

    Matching products add up; other lines move over to the user. Lines for
    products removed from the catalog are dropped and counted as skipped.
    """
    if not session_id:
        raise ValidationError("session_id required")

    synced = 0
    skipped = 0
    with unit_of_work() as session:
        if session.get(User, user_id) is None:
            raise UnauthorizedError("User not found")

        user_owner = CartOwner(user_id=user_id)
        guest_lines = open_lines(session, CartOwner(session_id=session_id), lock=True)

        for guest_line in guest_lines:
            if guest_line.product is None or guest_line.product.deleted_at is not None:
                session.delete(guest_line)
                skipped += 1
                continue

            existing = (
                open_lines_query(session, user_owner)
                .filter(Cart.product_id == guest_line.product_id)
                .first()
            )
            if existing is not None:
                existing.quantity += guest_line.quantity
                session.delete(guest_line)
            else:
                guest_line.user_id = user_id
                guest_line.session_id = None
            synced += 1
            session.flush()

    return {"synced_count": synced, "skipped_count": skipped}
