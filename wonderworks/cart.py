from typing import Dict

from flask import Flask, jsonify
from flask_jwt_extended import jwt_required

from .extensions import db
from .helpers import read_json, require_user, safe_int
from .models import Cart, CartItem, Product, User
from .serializers import serialize_product


def get_or_create_cart(user: User) -> Cart:
    cart = db.session.execute(db.select(Cart).filter_by(user_id=user.id)).scalar_one_or_none()
    if cart is None:
        cart = Cart(user_id=user.id)
        db.session.add(cart)
        db.session.commit()
    return cart


def find_cart_item(cart: Cart, product_id: int):
    return db.session.execute(
        db.select(CartItem).filter_by(cart_id=cart.id, product_id=product_id)
    ).scalar_one_or_none()


def serialize_cart(cart: Cart) -> Dict[str, object]:
    items = []
    total = 0.0
    item_count = 0
    for item in cart.items:
        product = item.product
        price = product.price if product else 0.0
        line_total = round(price * item.quantity, 2)
        total += line_total
        item_count += item.quantity
        items.append(
            {
                "id": item.id,
                "productId": item.product_id,
                "quantity": item.quantity,
                "lineTotal": line_total,
                "product": serialize_product(product, include_images=False) if product else None,
            }
        )
    return {"items": items, "total": round(total, 2), "itemCount": item_count}


def cart_response(cart: Cart, message: str, status: int = 200):
    db.session.refresh(cart)
    return (
        jsonify({"success": True, "message": message, "cart": serialize_cart(cart)}),
        status,
    )


def register_cart_routes(app: Flask) -> None:
    @app.route("/api/cart", methods=["GET"])
    @jwt_required()
    def get_cart():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        cart = get_or_create_cart(current_user)
        return cart_response(cart, "Cart retrieved successfully")

    @app.route("/api/cart", methods=["POST"])
    @jwt_required()
    def add_to_cart():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        payload = read_json()
        product_id = safe_int(payload.get("productId"))
        quantity = safe_int(payload.get("quantity"), 1)
        if product_id is None or quantity is None or quantity < 1:
            return jsonify({"message": "Valid productId and quantity are required"}), 400

        product = db.session.get(Product, product_id)
        if product is None or product.archived:
            return jsonify({"message": "Product not found"}), 404

        cart = get_or_create_cart(current_user)
        item = find_cart_item(cart, product.id)
        if item is None:
            db.session.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity))
        else:
            item.quantity += quantity
        db.session.commit()

        return cart_response(cart, "Item added to cart")

    @app.route("/api/cart", methods=["PUT"])
    @jwt_required()
    def update_cart_item():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        payload = read_json()
        product_id = safe_int(payload.get("productId"))
        quantity = safe_int(payload.get("quantity"))
        if product_id is None or quantity is None:
            return jsonify({"message": "Valid productId and quantity are required"}), 400

        cart = get_or_create_cart(current_user)
        item = find_cart_item(cart, product_id)
        if item is None:
            return jsonify({"message": "Item not found in cart"}), 404

        if quantity <= 0:
            db.session.delete(item)
            message = "Item removed from cart"
        else:
            item.quantity = quantity
            message = "Cart updated"
        db.session.commit()

        return cart_response(cart, message)

    @app.route("/api/cart", methods=["DELETE"])
    @jwt_required()
    def remove_from_cart():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        payload = read_json()
        cart = get_or_create_cart(current_user)

        if payload.get("productId") is None:
            db.session.execute(db.delete(CartItem).where(CartItem.cart_id == cart.id))
            db.session.commit()
            return cart_response(cart, "Cart cleared")

        product_id = safe_int(payload.get("productId"))
        if product_id is None:
            return jsonify({"message": "Invalid product ID"}), 400

        item = find_cart_item(cart, product_id)
        if item is None:
            return jsonify({"message": "Item not found in cart"}), 404

        db.session.delete(item)
        db.session.commit()
        return cart_response(cart, "Item removed from cart")
