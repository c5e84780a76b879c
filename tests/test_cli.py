from sqlalchemy import func

from wonderworks.extensions import db
from wonderworks.models import Category, Order, OrderItem, Product, User


def test_seed_is_repeatable(app):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["seed"])
    second = runner.invoke(args=["seed"])

    assert first.exit_code == 0, first.output
    assert "Created 4 sample products." in first.output
    assert "skipping samples" in second.output
    with app.app_context():
        admin = db.session.execute(
            db.select(User).filter_by(email="admin@wonderworks.com")
        ).scalar_one()
        assert admin.role == "ADMIN"
        assert admin.is_verified is True
        assert admin.check_password("admin123")
        assert db.session.execute(db.select(func.count(Category.id))).scalar() == 4
        assert db.session.execute(db.select(func.count(Product.id))).scalar() == 4


def test_create_admin_promotes_existing_user(app, make_user):
    make_user(email="staff@example.com", verified=False)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-admin", "Staff@Example.com", "--password", "longpassword"])

    assert result.exit_code == 0, result.output
    with app.app_context():
        user = db.session.execute(db.select(User).filter_by(email="staff@example.com")).scalar_one()
        assert user.role == "ADMIN"
        assert user.is_verified is True


def test_create_admin_validates_input(app):
    runner = app.test_cli_runner()

    bad_email = runner.invoke(args=["create-admin", "nope", "--password", "longpassword"])
    short = runner.invoke(args=["create-admin", "boss@example.com", "--password", "short"])

    assert bad_email.exit_code != 0
    assert short.exit_code != 0


def test_cleanup_orders_requires_confirmation(app, customer, make_product, place_order, monkeypatch):
    place_order(customer["headers"], [(make_product(), 2)])
    runner = app.test_cli_runner()

    refused = runner.invoke(args=["cleanup-orders"])
    assert refused.exit_code != 0
    with app.app_context():
        assert db.session.execute(db.select(Order)).first() is not None

    monkeypatch.setenv("APP_ENV", "production")
    assert runner.invoke(args=["cleanup-orders", "--yes"]).exit_code != 0
    monkeypatch.delenv("APP_ENV")

    confirmed = runner.invoke(args=["cleanup-orders", "--yes"])
    assert confirmed.exit_code == 0, confirmed.output
    with app.app_context():
        assert db.session.execute(db.select(Order)).first() is None
        assert db.session.execute(db.select(OrderItem)).first() is None


def test_init_db_reset(app, make_user):
    make_user()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["init-db", "--reset"])

    assert result.exit_code == 0, result.output
    with app.app_context():
        assert db.session.execute(db.select(User)).first() is None
