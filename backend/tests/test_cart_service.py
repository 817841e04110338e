"""
Cart tests.

Verifies:
- Adding the same product merges quantities
- Bulk add reports bad items and keeps the good ones
- Cart lines are only visible to their owner
- Guest carts merge into the user's cart after login
"""

from decimal import Decimal

import pytest

from maltiti.errors import CartItemNotFound, ForbiddenError, UnauthorizedError, ValidationError
from maltiti.models import Cart
from maltiti.services import cart_service
from maltiti.services.cart_service import CartOwner
from maltiti.time_utils import utcnow


class TestCartOwner:
    def test_needs_user_or_session(self):
        with pytest.raises(UnauthorizedError):
            CartOwner()

    def test_user_wins(self):
        owner = CartOwner(user_id="u1", session_id="s1")
        assert not owner.is_guest


class TestAddToCart:
    def test_same_product_merges(self, db_session, make_user, make_product):
        user = make_user()
        product = make_product(retail="20.00")
        owner = CartOwner(user_id=user.id)

        cart_service.add_to_cart(owner, product.id, 1)
        cart_service.add_to_cart(owner, product.id, 2)

        cart = cart_service.get_cart(owner)
        assert cart["count"] == 1
        assert cart["items"][0]["quantity"] == 3
        assert Decimal(cart["total"]) == Decimal("60.00")

    def test_default_quantity_is_one(self, db_session, make_product):
        line = cart_service.add_to_cart(CartOwner(session_id="s1"), make_product().id)
        assert line.quantity == 1

    @pytest.mark.parametrize("quantity", [0, -3, "many"])
    def test_bad_quantity(self, db_session, make_product, quantity):
        with pytest.raises(ValidationError):
            cart_service.add_to_cart(CartOwner(session_id="s1"), make_product().id, quantity)


class TestBulkAdd:
    def test_partial_failure(self, db_session, make_product):
        good = make_product()
        gone = make_product()
        gone.deleted_at = utcnow()
        db_session.commit()
        owner = CartOwner(session_id="s1")

        result = cart_service.bulk_add_to_cart(owner, [
            {"product_id": good.id, "quantity": 2},
            {"product_id": gone.id, "quantity": 1},
            {"product_id": "missing"},
            {"product_id": good.id, "quantity": 0},
        ])

        assert [item["product"]["id"] for item in result["added_items"]] == [good.id]
        assert result["skipped_items"] == [gone.id, "missing", good.id]
        assert cart_service.get_cart(owner)["items"][0]["quantity"] == 2

    def test_items_must_be_a_list(self, db_session):
        with pytest.raises(ValidationError):
            cart_service.bulk_add_to_cart(CartOwner(session_id="s1"), {"product_id": "x"})


class TestOwnership:
    def test_user_cannot_touch_other_users_line(self, db_session, make_user, make_product, add_cart_line):
        owner = make_user(email="a@example.com")
        other = make_user(email="b@example.com")
        line = add_cart_line(make_product(), user=owner)

        with pytest.raises(ForbiddenError):
            cart_service.update_quantity(CartOwner(user_id=other.id), line.id, 4)

    def test_guest_cannot_see_other_session(self, db_session, make_product, add_cart_line):
        line = add_cart_line(make_product(), session_id="s1")

        with pytest.raises(CartItemNotFound):
            cart_service.remove_from_cart(CartOwner(session_id="s2"), line.id)

    def test_update_and_remove(self, db_session, make_product, add_cart_line):
        owner = CartOwner(session_id="s1")
        line = add_cart_line(make_product(), session_id="s1")

        cart = cart_service.update_quantity(owner, line.id, 4)
        assert cart["items"][0]["quantity"] == 4

        cart_service.remove_from_cart(owner, line.id)
        assert cart_service.get_cart(owner)["count"] == 0

    def test_clear_only_removes_open_lines(self, db_session, make_product, add_cart_line):
        owner = CartOwner(session_id="s1")
        add_cart_line(make_product(), session_id="s1")
        add_cart_line(make_product(), session_id="s1")

        assert cart_service.clear_cart(owner) == 2
        assert cart_service.get_cart(owner)["count"] == 0


class TestGuestSync:
    def test_merge_and_transfer(self, db_session, make_user, make_product, add_cart_line):
        user = make_user()
        shared = make_product()
        guest_only = make_product()
        add_cart_line(shared, quantity=1, user=user)
        add_cart_line(shared, quantity=2, session_id="s1")
        add_cart_line(guest_only, quantity=3, session_id="s1")

        result = cart_service.sync_guest_cart_with_user(user.id, "s1")

        assert result == {"synced_count": 2, "skipped_count": 0}
        cart = cart_service.get_cart(CartOwner(user_id=user.id))
        quantities = {item["product"]["id"]: item["quantity"] for item in cart["items"]}
        assert quantities == {shared.id: 3, guest_only.id: 3}
        assert cart_service.get_cart(CartOwner(session_id="s1"))["count"] == 0

    def test_deleted_products_are_skipped(self, db_session, make_user, make_product, add_cart_line):
        user = make_user()
        retired = make_product()
        add_cart_line(retired, quantity=1, session_id="s1")
        retired.deleted_at = utcnow()
        db_session.commit()

        result = cart_service.sync_guest_cart_with_user(user.id, "s1")

        assert result == {"synced_count": 0, "skipped_count": 1}
        assert db_session.query(Cart).count() == 0

    def test_unknown_user(self, db_session):
        with pytest.raises(UnauthorizedError):
            cart_service.sync_guest_cart_with_user("nobody", "s1")
