import hashlib
import hmac
import json
import time

import pytest
import resend
from flask_jwt_extended import create_access_token

from wonderworks import create_app
from wonderworks.extensions import db
from wonderworks.models import ROLE_ADMIN, ROLE_CUSTOMER, Category, Product, ProductImage, User

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length",
            "JWT_COOKIE_CSRF_PROTECT": False,
            "APP_BASE_URL": "http://shop.test",
            "RESEND_API_KEY": "re_test",
            "STRIPE_SECRET_KEY": "sk_test_123",
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        }
    )

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Capture outgoing Resend payloads instead of calling the API."""
    outbox = []

    def fake_send(payload):
        outbox.append(payload)
        return {"id": f"email_{len(outbox)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return outbox


@pytest.fixture
def make_user(app):
    def _make_user(
        email="shopper@example.com",
        password="secret123",
        role=ROLE_CUSTOMER,
        verified=True,
        name="Shopper",
    ):
        with app.app_context():
            user = User(email=email, name=name, role=role, is_verified=verified)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(email):
        with app.app_context():
            token = create_access_token(identity=email)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def customer(make_user, auth_headers):
    email = "shopper@example.com"
    user_id = make_user(email=email)
    return {"id": user_id, "email": email, "headers": auth_headers(email)}


@pytest.fixture
def admin(make_user, auth_headers):
    email = "admin@wonderworks.com"
    user_id = make_user(email=email, role=ROLE_ADMIN, name="Admin User")
    return {"id": user_id, "email": email, "headers": auth_headers(email)}


@pytest.fixture
def make_category(app):
    def _make_category(name="Toys & Games", slug="toys-games"):
        with app.app_context():
            category = Category(name=name, slug=slug)
            db.session.add(category)
            db.session.commit()
            return category.id

    return _make_category


@pytest.fixture
def make_product(app, make_category):
    def _make_product(name="Wooden Puzzle", price=10.0, category_id=None, images=(), **fields):
        with app.app_context():
            if category_id is None:
                category = db.session.execute(db.select(Category).limit(1)).scalar_one_or_none()
                category_id = category.id if category else None
        if category_id is None:
            category_id = make_category()

        with app.app_context():
            product = Product(
                name=name,
                price=price,
                category_id=category_id,
                stock=fields.pop("stock", 10),
                **fields,
            )
            product.images = [
                ProductImage(url=url, position=position) for position, url in enumerate(images)
            ]
            db.session.add(product)
            db.session.commit()
            return product.id

    return _make_product


@pytest.fixture
def place_order(client):
    """Fill the cart through the API and check it out, returning the order id."""

    def _place_order(headers, lines, **body):
        for product_id, quantity in lines:
            response = client.post(
                "/api/cart", json={"productId": product_id, "quantity": quantity}, headers=headers
            )
            assert response.status_code == 200
        response = client.post("/api/orders", json=body, headers=headers)
        assert response.status_code == 201
        return response.get_json()["id"]

    return _place_order


def sign_webhook(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def webhook_event(event_type: str, order_id) -> str:
    return json.dumps(
        {
            "id": "evt_test",
            "type": event_type,
            "data": {"object": {"id": "pi_test", "metadata": {"orderId": str(order_id)}}},
        }
    )
