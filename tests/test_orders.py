import resend
from sqlalchemy.exc import SQLAlchemyError

from wonderworks import orders as orders_module
from wonderworks.extensions import db
from wonderworks.models import Address, Cart, CartItem, Order, OrderItem, Product


def cart_item_count(app, user_id):
    with app.app_context():
        cart = db.session.execute(db.select(Cart).filter_by(user_id=user_id)).scalar_one_or_none()
        return len(cart.items) if cart else 0


def test_order_total_matches_lines_and_cart_is_emptied(
    client, app, customer, make_product, place_order, sent_emails
):
    puzzle = make_product(name="Puzzle", price=12.5)
    lamp = make_product(name="Lamp", price=40.25)

    order_id = place_order(
        customer["headers"], [(puzzle, 2), (lamp, 1)], address="1 Nile St, Cairo"
    )

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == "PENDING"
        assert order.payment_method == "CREDIT_CARD"
        assert order.shipping_address == "1 Nile St, Cairo"
        assert order.total == 65.25
        assert order.total == sum(item.price * item.quantity for item in order.items)
        assert sorted((item.product_id, item.quantity, item.price) for item in order.items) == sorted(
            [(puzzle, 2, 12.5), (lamp, 1, 40.25)]
        )
    assert cart_item_count(app, customer["id"]) == 0

    assert len(sent_emails) == 1
    assert sent_emails[0]["subject"] == f"Order Confirmation #{order_id} - WonderWorks"


def test_order_keeps_price_at_purchase_time(client, app, customer, make_product, place_order):
    product_id = make_product(price=10)
    order_id = place_order(customer["headers"], [(product_id, 3)])

    with app.app_context():
        db.session.get(Product, product_id).price = 99
        db.session.commit()

    detail = client.get(f"/api/orders/{order_id}", headers=customer["headers"]).get_json()
    assert detail["total"] == 30
    assert detail["items"][0]["price"] == 10


def test_cash_on_delivery_and_default_address(client, app, customer, make_product, place_order):
    with app.app_context():
        db.session.add(
            Address(
                user_id=customer["id"],
                first_name="Mona",
                last_name="Adel",
                address1="5 Garden St",
                city="Giza",
                state="Giza",
                postal_code="12511",
                country="Egypt",
                is_default=True,
            )
        )
        db.session.commit()

    order_id = place_order(customer["headers"], [(make_product(), 1)], paymentMethod="cod")

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.payment_method == "COD"
        assert order.shipping_address == "Mona Adel, 5 Garden St, Giza, Giza 12511, Egypt"


def test_empty_cart_is_rejected_without_creating_an_order(client, app, customer):
    response = client.post("/api/orders", json={}, headers=customer["headers"])

    assert response.status_code == 400
    assert response.get_json()["message"] == "Cart is empty"
    client.get("/api/cart", headers=customer["headers"])
    assert client.post("/api/orders", json={}, headers=customer["headers"]).status_code == 400
    with app.app_context():
        assert db.session.execute(db.select(Order)).first() is None


def test_database_failure_rolls_back_the_whole_order(
    client, app, customer, make_product, monkeypatch, sent_emails
):
    product_id = make_product()
    client.post("/api/cart", json={"productId": product_id, "quantity": 2}, headers=customer["headers"])
    real_place_order = orders_module.place_order

    def failing_place_order(*args, **kwargs):
        real_place_order(*args, **kwargs)
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(orders_module, "place_order", failing_place_order)

    response = client.post("/api/orders", json={}, headers=customer["headers"])

    assert response.status_code == 500
    with app.app_context():
        assert db.session.execute(db.select(Order)).first() is None
        assert db.session.execute(db.select(OrderItem)).first() is None
        assert db.session.execute(db.select(CartItem)).scalar_one().quantity == 2
    assert sent_emails == []


def test_confirmation_email_failure_does_not_fail_the_order(
    client, app, customer, make_product, place_order, monkeypatch
):
    def broken_send(payload):
        raise RuntimeError("resend is down")

    monkeypatch.setattr(resend.Emails, "send", broken_send)

    order_id = place_order(customer["headers"], [(make_product(), 1)])

    with app.app_context():
        assert db.session.get(Order, order_id) is not None


def test_orders_are_private_to_their_owner(
    client, customer, make_user, auth_headers, make_product, place_order
):
    order_id = place_order(customer["headers"], [(make_product(), 1)])
    make_user(email="other@example.com")
    other_headers = auth_headers("other@example.com")

    own = client.get("/api/orders", headers=customer["headers"]).get_json()
    assert [order["id"] for order in own] == [order_id]
    assert client.get("/api/orders", headers=other_headers).get_json() == []

    assert client.get(f"/api/orders/{order_id}", headers=other_headers).status_code == 404
    assert client.get("/api/orders/not-a-number", headers=customer["headers"]).status_code == 400
    assert client.get("/api/orders/9999", headers=customer["headers"]).status_code == 404
