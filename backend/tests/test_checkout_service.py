"""
Checkout tests.

Verifies:
- Happy path totals (retail 20 x 2, Tamale delivery 25 -> 65)
- A gateway failure leaves no sale, no checkout and an open cart (user and guest)
- Orders outside the delivery table wait for an admin-set fee
- Guest checkout and paying for a placed order
"""

from decimal import Decimal

import pytest

from maltiti.errors import EmptyCart, ForbiddenError, InvalidStateError, PaymentInitFailed, ValidationError
from maltiti.models import Cart, Checkout, Customer, Sale
from maltiti.services import checkout_service
from maltiti.services.cart_service import CartOwner
from maltiti.services.notification_service import TEMPLATE_ADMIN_NEW_ORDER, TEMPLATE_ORDER_PLACED

from conftest import ADMIN_EMAIL


@pytest.fixture
def buyer(make_user):
    return make_user(email="buyer@example.com", name="Ama Mensah")


@pytest.fixture
def shea(make_product):
    return make_product(retail="20.00", quantity_in_box=12)


def _open_lines(db_session):
    return db_session.query(Cart).filter(Cart.checkout_id.is_(None)).count()


class TestPlaceOrder:
    def test_happy_path(self, db_session, buyer, shea, add_cart_line, tamale_address, gateway, notifier):
        add_cart_line(shea, quantity=2, user=buyer)

        result = checkout_service.place_order(buyer.id, tamale_address)

        sale = result.checkout.sale
        assert sale.amount == Decimal("40.00")
        assert sale.delivery_fee == Decimal("25.00")
        assert sale.total_amount == Decimal("65.00")
        assert sale.order_status == "pending"
        assert sale.payment_status == "invoice_requested"
        assert result.checkout.amount == Decimal("65.00")
        assert result.payment is None
        assert gateway.initialized == []

        items = sale.get_line_items()
        assert len(items) == 1
        assert items[0].requested_quantity == 2
        assert items[0].final_price == Decimal("20.00")
        assert items[0].batch_allocations == []

        assert _open_lines(db_session) == 0
        assert notifier.sent_to("buyer@example.com")[0]["template"] == TEMPLATE_ORDER_PLACED
        assert notifier.sent_to(ADMIN_EMAIL)[0]["template"] == TEMPLATE_ADMIN_NEW_ORDER

    def test_customer_address_is_overwritten(self, db_session, buyer, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=1, user=buyer)

        checkout_service.place_order(buyer.id, {**tamale_address, "extra_info": "Near the market"})

        customer = db_session.query(Customer).filter(Customer.user_id == buyer.id).one()
        assert customer.city == "Tamale"
        assert customer.address == "Ghana, Northern, Tamale, Near the market"

    def test_unlinked_customer_with_same_email_is_linked(self, db_session, buyer, shea, add_cart_line,
                                                         make_customer, tamale_address):
        existing = make_customer(email=buyer.email, name="Ama")
        add_cart_line(shea, quantity=1, user=buyer)

        result = checkout_service.place_order(buyer.id, tamale_address)

        assert result.checkout.sale.customer_id == existing.id
        assert db_session.get(Customer, existing.id).user_id == buyer.id

    def test_second_checkout_finds_empty_cart(self, db_session, buyer, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=2, user=buyer)
        checkout_service.place_order(buyer.id, tamale_address)

        with pytest.raises(EmptyCart):
            checkout_service.place_order(buyer.id, tamale_address)

        assert db_session.query(Sale).count() == 1

    def test_missing_address(self, db_session, buyer, shea, add_cart_line):
        add_cart_line(shea, quantity=1, user=buyer)

        with pytest.raises(ValidationError):
            checkout_service.place_order(buyer.id, {"country": "Ghana"})

        assert _open_lines(db_session) == 1


class TestPayNow:
    def test_initialize_transaction(self, db_session, buyer, shea, add_cart_line, tamale_address, gateway):
        add_cart_line(shea, quantity=2, user=buyer)

        result = checkout_service.initialize_transaction(buyer.id, tamale_address)

        sale = result.checkout.sale
        assert sale.payment_status == "pending_payment"
        assert len(gateway.initialized) == 1
        call = gateway.initialized[0]
        assert call["amount"] == Decimal("65.00")
        assert call["email"] == "buyer@example.com"
        assert call["reference"].startswith(f"SALE-{sale.id}-")
        assert call["callback_url"] == f"https://shop.maltiti.test/track-order/{sale.id}"
        assert sale.payment_reference == call["reference"]
        assert result.checkout.payment_reference == call["reference"]
        assert result.to_dict()["payment"]["authorization_url"].endswith(call["reference"])

    def test_gateway_failure_is_atomic(self, db_session, buyer, shea, add_cart_line, tamale_address,
                                       gateway, notifier):
        add_cart_line(shea, quantity=2, user=buyer)
        gateway.fail_initialize = True

        with pytest.raises(PaymentInitFailed):
            checkout_service.initialize_transaction(buyer.id, tamale_address)

        assert db_session.query(Sale).count() == 0
        assert db_session.query(Checkout).count() == 0
        assert db_session.query(Customer).count() == 0
        assert _open_lines(db_session) == 1
        assert notifier.sent == []

        gateway.fail_initialize = False
        result = checkout_service.initialize_transaction(buyer.id, tamale_address)
        assert result.checkout.sale.payment_status == "pending_payment"

    def test_foreign_address_waits_for_delivery_fee(self, db_session, buyer, shea, add_cart_line, gateway):
        add_cart_line(shea, quantity=2, user=buyer)

        result = checkout_service.initialize_transaction(
            buyer.id, {"country": "Togo", "region": "Maritime", "city": "Lome"}
        )

        sale = result.checkout.sale
        assert sale.payment_status == "awaiting_delivery"
        assert sale.delivery_fee is None
        assert sale.total_amount == Decimal("40.00")
        assert result.checkout.amount is None
        assert gateway.initialized == []
        body = result.to_dict()
        assert body["awaiting_delivery"] is True
        assert "Delivery fee will be calculated" in body["message"]


class TestGuestCheckout:
    def _guest_data(self, tamale_address, **extra):
        return {**tamale_address, "session_id": "sess-1", "email": "guest@example.com", "name": "Kofi", **extra}

    def test_guest_place_order(self, db_session, shea, add_cart_line, tamale_address, notifier):
        add_cart_line(shea, quantity=2, session_id="sess-1")

        result = checkout_service.guest_place_order(self._guest_data(tamale_address))

        assert result.checkout.guest_email == "guest@example.com"
        assert result.checkout.sale.customer.email == "guest@example.com"
        assert result.checkout.sale.customer.user_id is None
        assert notifier.sent_to(ADMIN_EMAIL)[0]["subject"] == "New Guest Order Received"

    def test_guest_gateway_failure_is_atomic(self, db_session, shea, make_product, add_cart_line,
                                             tamale_address, gateway, notifier):
        add_cart_line(shea, quantity=2, session_id="sess-1")
        add_cart_line(make_product(retail="15.00"), quantity=1, session_id="sess-1")
        gateway.fail_initialize = True

        with pytest.raises(PaymentInitFailed):
            checkout_service.guest_initialize_transaction(self._guest_data(tamale_address))

        assert db_session.query(Sale).count() == 0
        assert db_session.query(Checkout).count() == 0
        assert db_session.query(Customer).count() == 0
        open_lines = db_session.query(Cart).filter(Cart.session_id == "sess-1", Cart.checkout_id.is_(None))
        assert open_lines.count() == 2
        assert notifier.sent == []

    def test_guest_requires_name(self, db_session, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=1, session_id="sess-1")

        with pytest.raises(ValidationError):
            checkout_service.guest_place_order(self._guest_data(tamale_address, name=""))

    def test_other_sessions_cart_is_untouched(self, db_session, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=1, session_id="sess-2")

        with pytest.raises(EmptyCart):
            checkout_service.guest_place_order(self._guest_data(tamale_address))


class TestPayLater:
    def test_pay_for_placed_order(self, db_session, buyer, shea, add_cart_line, tamale_address, gateway):
        add_cart_line(shea, quantity=2, user=buyer)
        placed = checkout_service.place_order(buyer.id, tamale_address)

        payment = checkout_service.pay_for_order(buyer.id, placed.checkout.id)

        sale = db_session.get(Sale, placed.checkout.sale_id)
        assert sale.payment_status == "pending_payment"
        assert sale.payment_reference == payment.reference
        assert gateway.initialized[0]["amount"] == Decimal("65.00")

    def test_other_user_cannot_pay(self, db_session, buyer, make_user, shea, add_cart_line, tamale_address):
        stranger = make_user(email="stranger@example.com")
        add_cart_line(shea, quantity=1, user=buyer)
        placed = checkout_service.place_order(buyer.id, tamale_address)

        with pytest.raises(ForbiddenError):
            checkout_service.pay_for_order(stranger.id, placed.checkout.id)

    def test_awaiting_delivery_cannot_be_paid(self, db_session, buyer, shea, add_cart_line):
        add_cart_line(shea, quantity=1, user=buyer)
        placed = checkout_service.place_order(buyer.id, {"country": "Togo", "region": "Maritime", "city": "Lome"})

        with pytest.raises(InvalidStateError):
            checkout_service.pay_for_order(buyer.id, placed.checkout.id)

    def test_guest_pay_checks_email(self, db_session, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=1, session_id="sess-1")
        placed = checkout_service.guest_place_order(
            {**tamale_address, "session_id": "sess-1", "email": "guest@example.com", "name": "Kofi"}
        )

        with pytest.raises(ForbiddenError):
            checkout_service.pay_for_guest_order(placed.checkout.id, "someone@else.com")

        payment = checkout_service.pay_for_guest_order(placed.checkout.id, "GUEST@example.com")
        assert payment.reference


class TestDeliveryQuote:
    def test_quote_for_open_cart(self, db_session, buyer, shea, add_cart_line, tamale_address):
        add_cart_line(shea, quantity=13, user=buyer)

        cost = checkout_service.get_delivery_cost(CartOwner(user_id=buyer.id), tamale_address)

        assert cost == Decimal("50.00")

    def test_quote_needs_items(self, db_session, buyer, tamale_address):
        with pytest.raises(EmptyCart):
            checkout_service.get_delivery_cost(CartOwner(user_id=buyer.id), tamale_address)
