"""
Relational schema for the storefront.

Every table used by the API lives here. Business rules are kept in the
route modules; models only carry columns, relationships and cascades.
"""
from datetime import datetime

import bcrypt

from .extensions import db

ROLE_ADMIN = "ADMIN"
ROLE_CUSTOMER = "CUSTOMER"
USER_ROLES = (ROLE_ADMIN, ROLE_CUSTOMER)

ORDER_PENDING = "PENDING"
ORDER_PROCESSING = "PROCESSING"
ORDER_SHIPPED = "SHIPPED"
ORDER_DELIVERED = "DELIVERED"
ORDER_CANCELLED = "CANCELLED"
ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)

PAYMENT_CREDIT_CARD = "CREDIT_CARD"
PAYMENT_COD = "COD"

ADDRESS_TYPES = ("HOME", "WORK", "OTHER")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120))
    password = db.Column(db.String(128))
    role = db.Column(db.String(20), nullable=False, default=ROLE_CUSTOMER)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    orders = db.relationship(
        "Order", back_populates="user", cascade="all, delete-orphan", lazy=True
    )
    addresses = db.relationship(
        "Address", back_populates="user", cascade="all, delete-orphan", lazy=True
    )
    cart = db.relationship(
        "Cart", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    wishlist = db.relationship(
        "Wishlist", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    reviews = db.relationship(
        "Review", back_populates="user", cascade="all, delete-orphan", lazy=True
    )
    verification_tokens = db.relationship(
        "VerificationToken", cascade="all, delete-orphan", lazy=True
    )
    password_reset_tokens = db.relationship(
        "PasswordResetToken", cascade="all, delete-orphan", lazy=True
    )

    def set_password(self, raw_password: str) -> None:
        hashed = bcrypt.hashpw(raw_password.encode("utf-8"), bcrypt.gensalt(rounds=10))
        self.password = hashed.decode("utf-8")

    def check_password(self, raw_password: str) -> bool:
        if not self.password or not raw_password:
            return False
        return bcrypt.checkpw(raw_password.encode("utf-8"), self.password.encode("utf-8"))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    name_ar = db.Column(db.String(120))
    slug = db.Column(db.String(140), unique=True, nullable=False, index=True)
    description = db.Column(db.Text)
    image = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = db.relationship("Product", back_populates="category", lazy=True)

    def __repr__(self):
        return f"<Category(id={self.id}, slug={self.slug})>"


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200))
    description = db.Column(db.Text)
    price = db.Column(db.Float, nullable=False)
    original_price = db.Column(db.Float)
    image = db.Column(db.Text)
    rating = db.Column(db.Float, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    in_stock = db.Column(db.Boolean, nullable=False, default=True)
    featured = db.Column(db.Boolean, nullable=False, default=False)
    archived = db.Column(db.Boolean, nullable=False, default=False)
    is_flash_deal = db.Column(db.Boolean, nullable=False, default=False)
    is_recommended = db.Column(db.Boolean, nullable=False, default=False)
    flash_deal_end_time = db.Column(db.DateTime)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = db.relationship("Category", back_populates="products")
    images = db.relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.position",
        lazy=True,
    )
    reviews = db.relationship(
        "Review", back_populates="product", cascade="all, delete-orphan", lazy=True
    )
    cart_items = db.relationship(
        "CartItem", back_populates="product", cascade="all, delete-orphan", lazy=True
    )
    wishlist_items = db.relationship(
        "WishlistItem", back_populates="product", cascade="all, delete-orphan", lazy=True
    )
    order_items = db.relationship("OrderItem", back_populates="product", lazy=True)

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


class ProductImage(db.Model):
    __tablename__ = "product_images"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    url = db.Column(db.Text, nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product", back_populates="images")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    total = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ORDER_PENDING, index=True)
    payment_method = db.Column(db.String(20), nullable=False, default=PAYMENT_CREDIT_CARD)
    shipping_address = db.Column(db.Text)
    payment_intent_id = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="orders")
    items = db.relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", lazy=True
    )

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total}, status={self.status})>"


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Float, nullable=False)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product", back_populates="order_items")


class Cart(db.Model):
    __tablename__ = "carts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="cart")
    items = db.relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy=True,
    )


class CartItem(db.Model):
    __tablename__ = "cart_items"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product", back_populates="cart_items")


class Wishlist(db.Model):
    __tablename__ = "wishlists"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="wishlist")
    items = db.relationship(
        "WishlistItem",
        back_populates="wishlist",
        cascade="all, delete-orphan",
        order_by="WishlistItem.added_at.desc()",
        lazy=True,
    )


class WishlistItem(db.Model):
    __tablename__ = "wishlist_items"
    __table_args__ = (
        db.UniqueConstraint("wishlist_id", "product_id", name="uq_wishlist_product"),
    )

    id = db.Column(db.Integer, primary_key=True)
    wishlist_id = db.Column(db.Integer, db.ForeignKey("wishlists.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    added_at = db.Column(db.DateTime, default=datetime.utcnow)

    wishlist = db.relationship("Wishlist", back_populates="items")
    product = db.relationship("Product", back_populates="wishlist_items")


class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    type = db.Column(db.String(10), nullable=False, default="HOME")
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    company = db.Column(db.String(150))
    address1 = db.Column(db.String(255), nullable=False)
    address2 = db.Column(db.String(255))
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=False)
    postal_code = db.Column(db.String(20), nullable=False)
    country = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(40))
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", back_populates="addresses")


class Review(db.Model):
    __tablename__ = "reviews"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True)
    author = db.Column(db.String(255), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    product = db.relationship("Product", back_populates="reviews")
    user = db.relationship("User", back_populates="reviews")


class VerificationToken(db.Model):
    __tablename__ = "verification_tokens"

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    expires = db.Column(db.DateTime, nullable=False)


class PasswordResetToken(db.Model):
    __tablename__ = "password_reset_tokens"

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    expires = db.Column(db.DateTime, nullable=False)
