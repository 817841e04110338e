"""
Pytest fixtures for the Maltiti order backend tests.

Provides an in-memory database, a test client, factory fixtures for catalog
and customer rows, and fakes for the payment gateway and the notifier.
"""

from decimal import Decimal

import pytest

from maltiti import create_app
from maltiti.errors import PaymentInitFailed, PaymentVerificationFailed, RefundFailed
from maltiti.extensions import db
from maltiti.models import Batch, Cart, Customer, Product, ROLE_ADMIN, ROLE_CUSTOMER, User
from maltiti.services.notification_service import Notifier
from maltiti.services.payment_gateway import InitializeResult, VerifyResult


ADMIN_EMAIL = "admin@maltiti.test"
PAYSTACK_SECRET = "sk_test_secret"


# =============================================================================
# FAKES
# =============================================================================

class FakeGateway:
    """Records every call; flip the fail_* flags to simulate Paystack errors."""

    def __init__(self):
        self.initialized = []
        self.verified = []
        self.refunds = []
        self.fail_initialize = False
        self.fail_refund = False
        self.verify_status = "success"

    def initialize(self, amount, email, reference, callback_url=None):
        if self.fail_initialize:
            raise PaymentInitFailed("Unable to connect to payment provider")
        self.initialized.append({
            "amount": Decimal(str(amount)),
            "email": email,
            "reference": reference,
            "callback_url": callback_url,
        })
        return InitializeResult(
            authorization_url=f"https://checkout.paystack.test/{reference}",
            access_code="ac_test",
            reference=reference,
        )

    def verify(self, reference):
        self.verified.append(reference)
        if self.verify_status != "success":
            raise PaymentVerificationFailed(f"Payment not successful: {self.verify_status}")
        return VerifyResult(reference=reference, status="success")

    def refund(self, reference, amount=None):
        if self.fail_refund:
            raise RefundFailed("Refund rejected")
        self.refunds.append((reference, Decimal(str(amount)) if amount is not None else None))
        return {"status": "pending"}


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, template, to, subject, context):
        if self.fail:
            raise RuntimeError("Email sending failed: 500")
        self.sent.append({"template": template, "to": to, "subject": subject, "context": dict(context)})

    def templates(self):
        return [message["template"] for message in self.sent]

    def sent_to(self, email):
        return [
            message for message in self.sent
            if message["to"] == email or (not isinstance(message["to"], str) and email in message["to"])
        ]


# =============================================================================
# APP / DB
# =============================================================================

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYSTACK_SECRET_KEY': PAYSTACK_SECRET,
        'EMAIL_API_KEY': '',
        'ADMIN_EMAILS': [ADMIN_EMAIL],
        'FRONTEND_URL': 'https://shop.maltiti.test',
        'PAYMENT_CALLBACK_URL': '',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def gateway(app):
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture(autouse=True)
def notifier(app):
    fake = RecordingNotifier()
    app.extensions["notifier"] = fake
    return fake


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(retail="20.00", quantity_in_box=12, name=None):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:03d}",
            name=name or f"Shea Butter {counter['n']}",
            retail=Decimal(retail),
            quantity_in_box=quantity_in_box,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_batch(db_session):
    counter = {"n": 0}

    def _make(product, quantity=10):
        counter["n"] += 1
        batch = Batch(
            batch_number=f"B-{counter['n']:04d}",
            product_id=product.id,
            quantity=quantity,
            is_active=quantity > 0,
        )
        db_session.add(batch)
        db_session.commit()
        return batch

    return _make


@pytest.fixture
def make_user(db_session):
    def _make(email="buyer@example.com", name="Ama Mensah", role=ROLE_CUSTOMER):
        user = User(name=name, email=email, role=role)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_customer(db_session):
    def _make(email="guest@example.com", name="Kofi Boateng", user=None):
        customer = Customer(name=name, email=email, user_id=user.id if user else None)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture
def add_cart_line(db_session):
    def _add(product, quantity=1, user=None, session_id=None):
        line = Cart(
            product_id=product.id,
            quantity=quantity,
            user_id=user.id if user else None,
            session_id=None if user else session_id,
        )
        db_session.add(line)
        db_session.commit()
        return line

    return _add


@pytest.fixture
def tamale_address():
    return {
        "country": "Ghana",
        "region": "Northern",
        "city": "Tamale",
        "phone_number": "+233200000000",
    }


def user_headers(user) -> dict:
    return {"X-User-Id": user.id, "X-User-Role": user.role}


def admin_headers(user) -> dict:
    return {"X-User-Id": user.id, "X-User-Role": ROLE_ADMIN}
