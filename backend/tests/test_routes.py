"""
HTTP route tests.

Verifies:
- Identity headers gate user and admin routes (401/403)
- Typed service errors render as {"error", "code"} with their status
- The Paystack webhook rejects bad signatures before touching state
"""

import json

import pytest

from maltiti.models import ROLE_ADMIN, Sale
from maltiti.services import checkout_service
from maltiti.services.payment_reconciler import compute_signature

from conftest import PAYSTACK_SECRET, admin_headers, user_headers


@pytest.fixture
def buyer(make_user):
    return make_user(email="buyer@example.com")


@pytest.fixture
def admin(make_user):
    return make_user(email="ops@maltiti.test", name="Ops", role=ROLE_ADMIN)


# =============================================================================
# SYSTEM
# =============================================================================

class TestHealth:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# ACCESS CONTROL
# =============================================================================

class TestAccess:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/sales"),
            ("POST", "/sales"),
            ("PUT", "/sales/abc/status"),
            ("POST", "/sales/abc/cancel-by-admin"),
            ("POST", "/checkout/place-order"),
            ("GET", "/orders"),
        ],
    )
    def test_requires_identity(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path, json={})
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_customer_cannot_list_sales(self, client, buyer):
        resp = client.get("/sales", headers=user_headers(buyer))
        assert resp.status_code == 403

    def test_admin_lists_sales(self, client, admin):
        resp = client.get("/sales", headers=admin_headers(admin))
        assert resp.status_code == 200
        assert resp.json["total_items"] == 0

    def test_cart_needs_user_or_session(self, client, db_session):
        resp = client.get("/cart")
        assert resp.status_code == 401
        assert resp.json["code"] == "unauthorized"


# =============================================================================
# ERROR RENDERING
# =============================================================================

class TestErrors:
    def test_unknown_sale_is_404(self, client, admin):
        resp = client.get("/sales/does-not-exist", headers=admin_headers(admin))
        assert resp.status_code == 404
        assert resp.json["code"] == "not_found"

    def test_empty_cart_checkout_is_400(self, client, buyer, tamale_address):
        resp = client.post("/checkout/place-order", json=tamale_address, headers=user_headers(buyer))
        assert resp.status_code == 400
        assert resp.json["code"] == "empty_cart"

    def test_gateway_failure_is_502(self, client, buyer, make_product, add_cart_line, tamale_address, gateway):
        add_cart_line(make_product(), quantity=1, user=buyer)
        gateway.fail_initialize = True

        resp = client.post("/checkout/initialize-transaction", json=tamale_address, headers=user_headers(buyer))

        assert resp.status_code == 502
        assert resp.json["code"] == "upstream_failure"


# =============================================================================
# FLOWS
# =============================================================================

class TestCheckoutFlow:
    def test_guest_cart_to_order(self, client, db_session, make_product, tamale_address):
        product = make_product(retail="20.00", quantity_in_box=12)
        headers = {"X-Session-Id": "sess-9"}

        resp = client.post("/cart", json={"product_id": product.id, "quantity": 2}, headers=headers)
        assert resp.status_code == 201

        resp = client.post("/checkout/delivery-cost", json=tamale_address, headers=headers)
        assert resp.json == {"delivery_cost": "25.00", "awaiting_delivery": False}

        resp = client.post("/checkout/guest/place-order", json={
            **tamale_address,
            "session_id": "sess-9",
            "email": "guest@example.com",
            "name": "Kofi",
        })
        assert resp.status_code == 201
        checkout = resp.json["checkout"]
        assert checkout["amount"] == "65.00"
        assert checkout["sale"]["payment_status"] == "invoice_requested"

        resp = client.post("/orders/track", json={"sale_id": checkout["sale_id"], "email": "guest@example.com"})
        assert resp.status_code == 200

        resp = client.post("/orders/track", json={"sale_id": checkout["sale_id"], "email": "x@example.com"})
        assert resp.status_code == 403

    def test_customer_cancel_route(self, client, db_session, buyer, make_product, add_cart_line, tamale_address):
        add_cart_line(make_product(), quantity=1, user=buyer)
        placed = checkout_service.place_order(buyer.id, tamale_address)
        sale_id = placed.checkout.sale_id

        resp = client.post(f"/sales/{sale_id}/customer-cancel", json={"email": buyer.email})

        assert resp.status_code == 200
        assert resp.json["sale"]["order_status"] == "cancelled"
        assert resp.json["refund_amount"] is None

        resp = client.post(f"/sales/{sale_id}/customer-cancel", json={"email": buyer.email})
        assert resp.status_code == 409


class TestWebhook:
    def _pending_reference(self, buyer, make_product, add_cart_line, tamale_address):
        add_cart_line(make_product(), quantity=1, user=buyer)
        result = checkout_service.initialize_transaction(buyer.id, tamale_address)
        return result.checkout.sale_id, result.payment.reference

    def test_bad_signature_rejected(self, client, db_session, buyer, make_product, add_cart_line, tamale_address):
        sale_id, reference = self._pending_reference(buyer, make_product, add_cart_line, tamale_address)
        body = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode()

        resp = client.post(
            "/checkout/webhook",
            data=body,
            content_type="application/json",
            headers={"x-paystack-signature": "deadbeef"},
        )

        assert resp.status_code == 401
        db_session.expire_all()
        assert db_session.get(Sale, sale_id).payment_status == "pending_payment"

    def test_signed_charge_success(self, client, db_session, buyer, make_product, add_cart_line, tamale_address):
        sale_id, reference = self._pending_reference(buyer, make_product, add_cart_line, tamale_address)
        body = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode()
        headers = {"x-paystack-signature": compute_signature(body, PAYSTACK_SECRET)}

        first = client.post("/checkout/webhook", data=body, content_type="application/json", headers=headers)
        second = client.post("/checkout/webhook", data=body, content_type="application/json", headers=headers)

        assert first.status_code == 200
        assert first.json == {"status": "ok"}
        assert second.status_code == 200
        db_session.expire_all()
        assert db_session.get(Sale, sale_id).payment_status == "paid"

    def test_unknown_reference_still_ok(self, client, db_session):
        body = json.dumps({"event": "charge.success", "data": {"reference": "SALE-elsewhere"}}).encode()
        headers = {"x-paystack-signature": compute_signature(body, PAYSTACK_SECRET)}

        resp = client.post("/checkout/webhook", data=body, content_type="application/json", headers=headers)

        assert resp.status_code == 200

    def test_failed_verification_is_logged_not_rejected(self, client, db_session, gateway, buyer, make_product,
                                                        add_cart_line, tamale_address):
        sale_id, reference = self._pending_reference(buyer, make_product, add_cart_line, tamale_address)
        gateway.verify_status = "abandoned"
        body = json.dumps({"event": "charge.success", "data": {"reference": reference}}).encode()
        headers = {"x-paystack-signature": compute_signature(body, PAYSTACK_SECRET)}

        resp = client.post("/checkout/webhook", data=body, content_type="application/json", headers=headers)

        assert resp.status_code == 200
        assert resp.json == {"status": "ok"}
        db_session.expire_all()
        assert db_session.get(Sale, sale_id).payment_status == "pending_payment"

    def test_signed_non_json_body_is_ignored(self, client, db_session):
        body = b"not json"
        headers = {"x-paystack-signature": compute_signature(body, PAYSTACK_SECRET)}

        resp = client.post("/checkout/webhook", data=body, content_type="application/json", headers=headers)

        assert resp.status_code == 200
        assert resp.json == {"status": "ok"}
