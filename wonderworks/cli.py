"""
Management commands exposed through ``flask --app wonderworks.wsgi <command>``.
"""
import os

import click
from flask import Flask, current_app

from .extensions import db
from .helpers import is_valid_email, normalize_email
from .models import ROLE_ADMIN, Category, Order, OrderItem, Product, ProductImage, User

SEED_CATEGORIES = [
    {
        "name": "Toys & Games",
        "name_ar": "ألعاب",
        "slug": "toys-games",
        "description": "Fun and educational toys for all ages",
    },
    {
        "name": "Home Decor",
        "name_ar": "ديكور المنزل",
        "slug": "decor",
        "description": "Beautiful decor items for your home",
    },
    {
        "name": "Home",
        "name_ar": "المنزل",
        "slug": "home",
        "description": "Home essentials",
    },
    {
        "name": "Stationary",
        "name_ar": "مستلزمات مكتبية",
        "slug": "stationary",
        "description": "Office and school supplies",
    },
]

SEED_PRODUCTS = [
    {
        "name": "Wooden Puzzle Set",
        "price": 24.99,
        "rating": 4.8,
        "stock": 40,
        "featured": True,
        "category": "toys-games",
        "description": "Hand-finished puzzles that grow with curious minds.",
    },
    {
        "name": "Modern Wall Art Canvas",
        "price": 89.99,
        "rating": 4.6,
        "stock": 12,
        "featured": True,
        "category": "decor",
        "description": "Contemporary canvas art to transform your space.",
    },
    {
        "name": "Ceramic Table Lamp",
        "price": 54.5,
        "rating": 4.4,
        "stock": 18,
        "category": "home",
        "description": "Soft ambient light with a hand-glazed ceramic base.",
    },
    {
        "name": "Linen Notebook Trio",
        "price": 15.0,
        "rating": 4.7,
        "stock": 75,
        "category": "stationary",
        "description": "Three lay-flat notebooks bound in natural linen.",
    },
]


def ensure_admin(email: str, password: str, name: str) -> User:
    user = db.session.execute(db.select(User).filter_by(email=email)).scalar_one_or_none()
    if user is None:
        user = User(email=email, name=name, role=ROLE_ADMIN, is_verified=True)
        user.set_password(password)
        db.session.add(user)
    else:
        user.role = ROLE_ADMIN
        user.is_verified = True
    db.session.commit()
    return user


def ensure_seed_categories():
    categories = {}
    for entry in SEED_CATEGORIES:
        category = db.session.execute(
            db.select(Category).filter_by(slug=entry["slug"])
        ).scalar_one_or_none()
        if category is None:
            category = Category(**entry)
            db.session.add(category)
        categories[entry["slug"]] = category
    db.session.commit()
    return categories


def ensure_seed_products(categories) -> int:
    if db.session.execute(db.select(Product.id).limit(1)).first() is not None:
        return 0

    for entry in SEED_PRODUCTS:
        fields = dict(entry)
        category = categories.get(fields.pop("category"))
        product = Product(
            category_id=category.id if category else None,
            in_stock=fields["stock"] > 0,
            **fields,
        )
        if product.image:
            product.images = [ProductImage(url=product.image, position=0)]
        db.session.add(product)
    db.session.commit()
    return len(SEED_PRODUCTS)


def is_production() -> bool:
    environment = os.getenv("APP_ENV") or os.getenv("FLASK_ENV") or ""
    return environment.strip().lower() == "production"


def register_cli_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    @click.option("--reset", is_flag=True, help="Drop every table before creating it again.")
    def init_db_command(reset):
        """Create the database tables."""
        if reset:
            db.drop_all()
            click.echo("Dropped all tables.")
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed")
    def seed_command():
        """Ensure the default admin, categories and sample products exist."""
        db.create_all()
        config = current_app.config
        admin = ensure_admin(
            config["DEFAULT_ADMIN_EMAIL"], config["DEFAULT_ADMIN_PASSWORD"], "Admin User"
        )
        click.echo(f"Admin ready: {admin.email}")

        categories = ensure_seed_categories()
        click.echo(f"Categories ready: {len(categories)}")

        created = ensure_seed_products(categories)
        if created:
            click.echo(f"Created {created} sample products.")
        else:
            click.echo("Catalog already has products, skipping samples.")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", default="Admin User", show_default=True)
    def create_admin_command(email, password, name):
        """Create a verified admin, or promote an existing user."""
        normalized = normalize_email(email)
        if not is_valid_email(normalized):
            raise click.BadParameter("Invalid email format", param_hint="EMAIL")
        if len(password) < current_app.config["MIN_PASSWORD_LENGTH"]:
            raise click.BadParameter(
                f"Password must be at least {current_app.config['MIN_PASSWORD_LENGTH']} characters long",
                param_hint="--password",
            )

        admin = ensure_admin(normalized, password, name)
        click.echo(f"Admin ready: {admin.email}")

    @app.cli.command("cleanup-orders")
    @click.option("--yes", is_flag=True, help="Confirm deleting every order.")
    def cleanup_orders_command(yes):
        """Delete all orders and their items (development only)."""
        if is_production():
            raise click.ClickException("Refusing to delete orders in production.")
        if not yes:
            raise click.ClickException("Pass --yes to delete every order.")

        deleted_items = db.session.execute(db.delete(OrderItem)).rowcount
        deleted_orders = db.session.execute(db.delete(Order)).rowcount
        db.session.commit()
        current_app.logger.warning(
            "Deleted %s orders and %s order items", deleted_orders, deleted_items
        )
        click.echo(f"Deleted {deleted_orders} orders and {deleted_items} order items.")
