from typing import Dict, Optional, Tuple

from flask import Flask, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import func, or_

from .extensions import db
from .helpers import (
    clean_text,
    load_or_404,
    parse_bool,
    parse_datetime,
    read_json,
    require_admin_user,
    require_user,
    safe_float,
    safe_int,
    slugify,
)
from .models import Category, OrderItem, Product, ProductImage, Review
from .serializers import serialize_category, serialize_product, serialize_review

PRODUCT_FLAG_FIELDS = {
    "featured": "featured",
    "isFlashDeal": "is_flash_deal",
    "isRecommended": "is_recommended",
    "archived": "archived",
}


def find_category_conflict(name: str, slug: str, exclude_id: Optional[int] = None):
    query = db.select(Category).where(
        or_(func.lower(Category.name) == name.lower(), Category.slug == slug)
    )
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    return db.session.execute(query.limit(1)).scalar_one_or_none()


def resolve_category(payload: Dict) -> Optional[Category]:
    category_id = safe_int(payload.get("categoryId", payload.get("category_id")))
    if category_id is not None:
        return db.session.get(Category, category_id)

    reference = payload.get("category")
    if isinstance(reference, dict):
        reference = reference.get("id") or reference.get("slug") or reference.get("name")
    reference_id = safe_int(reference)
    if reference_id is not None:
        return db.session.get(Category, reference_id)

    label = clean_text(reference)
    if not label:
        return None
    return db.session.execute(
        db.select(Category).where(
            or_(Category.slug == label.lower(), func.lower(Category.name) == label.lower())
        )
    ).scalar_one_or_none()


def normalize_image_list(raw_images):
    if not isinstance(raw_images, list):
        return []
    return [str(url).strip() for url in raw_images if str(url or "").strip()]


def validate_product_payload(payload: Dict) -> Tuple[Optional[Dict], Optional[str]]:
    """Validate a create/update body and return the column values to write."""
    name = clean_text(payload.get("name"))
    price = safe_float(payload.get("price"))
    if not name or price is None:
        return None, "Name, price, and category are required"
    if price <= 0:
        return None, "Price must be greater than 0"

    category = resolve_category(payload)
    if category is None:
        return None, "Category does not exist"

    fields: Dict[str, object] = {"name": name, "price": round(price, 2), "category_id": category.id}

    if "stock" in payload:
        stock = safe_int(payload.get("stock"))
        if stock is None or stock < 0:
            return None, "Stock cannot be negative"
        fields["stock"] = stock
        fields["in_stock"] = stock > 0
    elif "inStock" in payload:
        fields["in_stock"] = parse_bool(payload.get("inStock"), True)

    if "rating" in payload:
        rating = safe_float(payload.get("rating"), 0.0)
        if rating < 0 or rating > 5:
            return None, "Rating must be between 0 and 5"
        fields["rating"] = rating

    if "originalPrice" in payload:
        original_price = payload.get("originalPrice")
        if original_price in (None, ""):
            fields["original_price"] = None
        else:
            original_value = safe_float(original_price)
            if original_value is None or original_value <= 0:
                return None, "Original price must be greater than 0"
            fields["original_price"] = round(original_value, 2)

    if "flashDealEndTime" in payload:
        fields["flash_deal_end_time"] = parse_datetime(payload.get("flashDealEndTime"))

    for key, column in (("description", "description"), ("nameAr", "name_ar")):
        if key in payload:
            fields[column] = clean_text(payload.get(key))

    for key, column in PRODUCT_FLAG_FIELDS.items():
        if key in payload:
            fields[column] = parse_bool(payload.get(key))

    images = normalize_image_list(payload.get("images"))
    if images:
        fields["images"] = images
        fields["image"] = images[0]
    elif "image" in payload:
        fields["image"] = clean_text(payload.get("image"))

    return fields, None


def apply_product_fields(product: Product, fields: Dict) -> Product:
    images = fields.pop("images", None)
    for column, value in fields.items():
        setattr(product, column, value)
    if images:
        product.images = [
            ProductImage(url=url, position=position) for position, url in enumerate(images)
        ]
    return product


def is_product_ordered(product_id: int) -> bool:
    return (
        db.session.execute(
            db.select(OrderItem.id).filter_by(product_id=product_id).limit(1)
        ).first()
        is not None
    )


def recompute_product_rating(product: Product) -> float:
    average = db.session.execute(
        db.select(func.avg(Review.rating)).filter_by(product_id=product.id)
    ).scalar()
    product.rating = round(float(average or 0), 1)
    return product.rating


def register_catalog_routes(app: Flask) -> None:
    # Categories
    @app.route("/api/categories", methods=["GET"])
    def list_categories():
        categories = db.session.execute(db.select(Category).order_by(Category.name)).scalars()
        return jsonify([serialize_category(category) for category in categories])

    @app.route("/api/categories", methods=["POST"])
    @jwt_required()
    def create_category():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        name = " ".join(str(payload.get("name") or "").split())
        if not name:
            return (
                jsonify({"message": "Category name is required and cannot be empty"}),
                400,
            )

        slug = slugify(payload.get("slug") or name)
        if find_category_conflict(name, slug):
            return jsonify({"message": "Category already exists"}), 409

        category = Category(
            name=name,
            slug=slug,
            description=clean_text(payload.get("description")),
            image=clean_text(payload.get("image")),
        )
        db.session.add(category)
        db.session.commit()
        return jsonify(serialize_category(category)), 201

    # Products
    @app.route("/api/products", methods=["GET"])
    def list_products():
        query = db.select(Product).filter_by(archived=False)

        category_filter = clean_text(request.args.get("category"))
        if category_filter:
            category = resolve_category({"category": category_filter})
            if category is None:
                return jsonify([])
            query = query.filter_by(category_id=category.id)

        if "featured" in request.args:
            query = query.filter_by(featured=parse_bool(request.args.get("featured")))

        search = clean_text(request.args.get("search"))
        if search:
            query = query.where(Product.name.ilike(f"%{search}%"))

        products = db.session.execute(query.order_by(Product.id)).scalars()
        return jsonify([serialize_product(product) for product in products])

    @app.route("/api/products/<product_id>", methods=["GET"])
    def get_product(product_id: str):
        product, load_error = load_or_404(Product, product_id, "product")
        if load_error:
            return load_error
        return jsonify(serialize_product(product))

    @app.route("/api/products", methods=["POST"])
    @jwt_required()
    def create_product():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        fields, validation_error = validate_product_payload(read_json())
        if validation_error:
            return jsonify({"message": validation_error}), 400

        product = apply_product_fields(Product(), fields)
        db.session.add(product)
        db.session.commit()
        return jsonify(serialize_product(product)), 201

    @app.route("/api/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product, load_error = load_or_404(Product, product_id, "product")
        if load_error:
            return load_error

        fields, validation_error = validate_product_payload(read_json())
        if validation_error:
            return jsonify({"message": validation_error}), 400

        apply_product_fields(product, fields)
        db.session.commit()
        return jsonify(serialize_product(product))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product, load_error = load_or_404(Product, product_id, "product")
        if load_error:
            return load_error

        if is_product_ordered(product.id):
            return (
                jsonify(
                    {
                        "message": "Cannot delete product that has been ordered. Please mark as out of stock instead."
                    }
                ),
                409,
            )

        db.session.delete(product)
        db.session.commit()
        return jsonify({"message": "Product deleted successfully"})

    # Reviews
    @app.route("/api/products/<product_id>/reviews", methods=["GET"])
    def list_reviews(product_id: str):
        identifier = safe_int(product_id)
        if identifier is None:
            return jsonify({"message": "Invalid product ID"}), 400

        reviews = db.session.execute(
            db.select(Review)
            .filter_by(product_id=identifier)
            .order_by(Review.created_at.desc(), Review.id.desc())
        ).scalars()
        return jsonify([serialize_review(review) for review in reviews])

    @app.route("/api/products/<product_id>/reviews", methods=["POST"])
    @jwt_required()
    def create_review(product_id: str):
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        identifier = safe_int(product_id)
        if identifier is None:
            return jsonify({"message": "Invalid product ID"}), 400

        payload = read_json()
        rating = safe_int(payload.get("rating"))
        if rating is None or rating < 1 or rating > 5:
            return jsonify({"message": "Rating must be between 1 and 5"}), 400

        product = db.session.get(Product, identifier)
        if product is None:
            return jsonify({"message": "Product not found"}), 404

        existing_review = db.session.execute(
            db.select(Review.id)
            .filter_by(product_id=product.id, user_id=current_user.id)
            .limit(1)
        ).first()
        if existing_review is not None:
            return jsonify({"message": "You have already reviewed this product"}), 409

        review = Review(
            product_id=product.id,
            user_id=current_user.id,
            author=current_user.name or current_user.email,
            rating=rating,
            comment=clean_text(payload.get("comment")),
        )
        db.session.add(review)
        db.session.flush()
        recompute_product_rating(product)
        db.session.commit()

        return jsonify(serialize_review(review)), 201
