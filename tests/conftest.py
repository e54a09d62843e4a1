"""Pytest configuration for storefront tests."""

import re

import pytest
from fastapi.testclient import TestClient

from storefront.api.server import create_app
from storefront.core.config import StoreConfig
from storefront.core.errors import PaymentError
from storefront.db.models import Carrier, Category, Coupon, Product, User


# ---------------------------------------------------------------------------
# Test doubles for the outbound integrations (SMTP, Stripe)
# ---------------------------------------------------------------------------

class FakeMailTransport:
    """Records messages instead of talking to an SMTP server."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, message, smtp):
        if self.fail:
            raise ConnectionError("smtp down")
        self.sent.append(message)

    def subjects(self):
        return [m["Subject"] for m in self.sent]

    def recipients(self):
        return [m["To"] for m in self.sent]

    def html(self, index=-1):
        return self.sent[index].get_body(preferencelist=("html",)).get_content()

    def link_token(self, index=-1):
        """The ?token= value from a verification or reset link."""
        match = re.search(r"token=([A-Za-z0-9_\-]+)", self.html(index))
        return match.group(1) if match else None


class FakeStripeClient:
    """Stands in for StripeClient; hands out sequential payment intents."""

    def __init__(self):
        self.intents = []
        self.keys = []
        self.idempotency_keys = []
        self.closed = 0

    def create_payment_intent(self, amount, currency="usd", metadata=None, idempotency_key=None):
        self.idempotency_keys.append(idempotency_key)
        for intent in self.intents:
            if idempotency_key and intent["idempotency_key"] == idempotency_key:
                return dict(intent)
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "status": "requires_payment_method",
            "amount": amount,
            "currency": currency,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
        }
        self.intents.append(intent)
        return dict(intent)

    def retrieve_payment_intent(self, intent_id):
        for intent in self.intents:
            if intent["id"] == intent_id:
                return dict(intent)
        raise PaymentError(f"Payment provider error: No such payment_intent: '{intent_id}'")

    def close(self):
        self.closed += 1



def make_config(**overrides) -> StoreConfig:
    values = dict(
        env="test",
        database_url="sqlite://",
        redis_url="",
        jwt_secret="test-jwt-secret",
        bcrypt_rounds=4,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test_123",
        smtp_host="smtp.test.local",
        email_from="shop@test.local",
        admin_email="owner@test.local",
        store_name="Test Store",
    )
    values.update(overrides)
    return StoreConfig(**values)


# ---------------------------------------------------------------------------
# App / client fixtures. Each test gets its own in-memory database.
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def mailer_transport():
    return FakeMailTransport()


@pytest.fixture
def stripe():
    return FakeStripeClient()


@pytest.fixture
def app(config, mailer_transport, stripe):
    def factory(secret_key):
        stripe.keys.append(secret_key)
        return stripe

    application = create_app(config, mail_transport=mailer_transport, payment_client_factory=factory)
    application.state.db.create_all()
    yield application
    application.state.db.dispose()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def session(app):
    """A session for arranging and inspecting rows directly."""
    db = app.state.db.session()
    try:
        yield db
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def create_user(app, email, password="customer-pass-1", admin=False, **fields):
    with app.state.db.session() as db:
        user = User(
            email=email,
            password_hash=app.state.hasher.hash(password),
            account_type="admin" if admin else "customer",
            email_verified=True,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        token = app.state.tokens.issue(user)
        return user.id, token


@pytest.fixture
def customer(app):
    """(user_id, auth headers) for a regular customer."""
    user_id, token = create_user(app, "jane@example.com", first_name="Jane", last_name="Doe")
    return user_id, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(app):
    """(user_id, auth headers) for an admin."""
    user_id, token = create_user(app, "admin@example.com", password="Admin-Pass-123!", admin=True)
    return user_id, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def catalog(app):
    """
    Category 'gear' with three products and one carrier:
      mug   $20.00  stock 10
      shirt $15.50  stock 3
      poster $8.00  stock 0
    """
    with app.state.db.session() as db:
        gear = Category(name="Gear", slug="gear")
        books = Category(name="Books", slug="books")
        db.add_all([gear, books])
        db.flush()
        mug = Product(name="Mug", slug="mug", price=20.00, stock_quantity=10, category_id=gear.id,
                      description="Ceramic coffee mug")
        shirt = Product(name="Shirt", slug="shirt", price=15.50, stock_quantity=3, category_id=gear.id)
        poster = Product(name="Poster", slug="poster", price=8.00, stock_quantity=0, category_id=gear.id)
        novel = Product(name="Novel", slug="novel", price=12.00, stock_quantity=5, category_id=books.id)
        carrier = Carrier(name="UPS", code="ups", service_name="Ground", base_delivery_days=5)
        db.add_all([mug, shirt, poster, novel, carrier])
        db.commit()
        return {
            "gear": gear.id,
            "books": books.id,
            "mug": mug.id,
            "shirt": shirt.id,
            "poster": poster.id,
            "novel": novel.id,
            "carrier": carrier.id,
        }


def reload(app, model, pk):
    """Fresh copy of a row, read outside any request session."""
    with app.state.db.session() as db:
        row = db.get(model, pk)
        if row is not None:
            db.expunge(row)
        return row


def add_coupon(app, **fields):
    values = dict(code="SAVE10", discount_type="percentage", discount_value=10, minimum_order_amount=0)
    values.update(fields)
    with app.state.db.session() as db:
        coupon = Coupon(**values)
        db.add(coupon)
        db.commit()
        return coupon.id


SHIPPING_ADDRESS = {
    "first_name": "Jane",
    "last_name": "Doe",
    "email": "jane@example.com",
    "address": "1 Main St",
    "city": "Albany",
    "state": "NY",
    "zip": "12207",
    "country": "US",
}


def checkout_body(items, carrier_id, **extra):
    body = {
        "customer_email": "jane@example.com",
        "customer_name": "Jane Doe",
        "items": items,
        "shipping_address": dict(SHIPPING_ADDRESS),
        "shipping_carrier_id": carrier_id,
    }
    body.update(extra)
    return body
