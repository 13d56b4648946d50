"""Shared test fixtures for the storefront payments test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake gateway credentials)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- gateway_http: the gateway client's HTTP session, swapped for a MagicMock
- gateway_response: builds fake gateway HTTP responses
- sign: HMAC-signs a raw webhook body with the test secret
- make_order: inserts an order through the order store
- seed_data: a seller with a store, a buyer, and their ids
"""

import hashlib
import hmac
from unittest.mock import MagicMock

import pytest

from storefront import create_app
from storefront.extensions import db as _db
from storefront.models.user import User
from storefront.services.order_store import create_order


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def gateway_http(app):
    """Replace the gateway's requests.Session so no real HTTP is sent.

    Set `.request.return_value` / `.request.side_effect` in the test.
    """
    gateway = app.extensions["monime"]
    original = gateway.session
    gateway.session = MagicMock()
    yield gateway.session
    gateway.session = original


@pytest.fixture
def gateway_response():
    """Factory for fake HTTP responses: gateway_response(200, {...})."""

    def _make(status_code=200, payload=None):
        resp = MagicMock()
        resp.status_code = status_code
        resp.json.return_value = payload if payload is not None else {}
        return resp

    return _make


@pytest.fixture
def sign(app):
    """Hex HMAC-SHA256 of a raw body under the test webhook secret."""

    def _sign(raw_body):
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        secret = app.config["MONIME_WEBHOOK_SECRET"].encode("utf-8")
        return hmac.new(secret, raw_body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def make_order(db_session):
    """Insert an order with one line per (seller_id, price, quantity) tuple."""

    def _make(order_id="ord_42", session_id="cs_99", lines=None,
              customer_id=None, email="buyer@example.com"):
        lines = lines or [("seller_1", 15000, 1)]
        items = [
            {
                "product_id": f"prod_{i}",
                "seller_id": seller_id,
                "name": f"Item {i}",
                "price": price,
                "quantity": quantity,
            }
            for i, (seller_id, price, quantity) in enumerate(lines)
        ]
        return create_order(
            order_id=order_id,
            order_number="TF-00000042",
            items=items,
            total_amount=sum(price * qty for _, price, qty in lines),
            currency="SLE",
            customer_info={"name": "Ama Buyer", "email": email, "phone": "+23276000000"},
            delivery_address={"city": "Freetown", "street": "12 Siaka Stevens St"},
            customer_id=customer_id,
            checkout_session_id=session_id,
            checkout_url=f"https://checkout.monime.test/{session_id}",
        )

    return _make


@pytest.fixture
def seed_data(app, db_session):
    """Seed a seller with an active store and a plain buyer.

    Returns plain ids plus ready-made identity headers.
    """
    seller = User(
        id="seller_1",
        email="seller@example.com",
        display_name="Kadi's Crafts",
        has_store=True,
    )
    other_seller = User(
        id="seller_2",
        email="seller2@example.com",
        display_name="Other Shop",
        has_store=True,
    )
    buyer = User(id="buyer_1", email="buyer@example.com", display_name="Ama Buyer")
    _db.session.add_all([seller, other_seller, buyer])
    _db.session.commit()

    header = app.config["IDENTITY_HEADER"]
    return {
        "seller_id": seller.id,
        "other_seller_id": other_seller.id,
        "buyer_id": buyer.id,
        "seller_headers": {header: seller.id},
        "buyer_headers": {header: buyer.id},
    }
