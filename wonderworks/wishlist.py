from datetime import datetime

from flask import Flask, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .helpers import read_json, require_user, safe_int
from .models import Product, Wishlist, WishlistItem
from .serializers import isoformat, serialize_product


def find_wishlist(user_id: int):
    return db.session.execute(db.select(Wishlist).filter_by(user_id=user_id)).scalar_one_or_none()


def serialize_wishlist_item(item: WishlistItem):
    return {
        "id": item.id,
        "productId": item.product_id,
        "addedAt": isoformat(item.added_at),
        "product": serialize_product(item.product) if item.product else None,
    }


def register_wishlist_routes(app: Flask) -> None:
    @app.route("/api/wishlist", methods=["GET"])
    @jwt_required()
    def get_wishlist():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        wishlist = find_wishlist(current_user.id)
        items = [serialize_wishlist_item(item) for item in wishlist.items] if wishlist else []
        return jsonify({"success": True, "items": items, "itemCount": len(items)})

    @app.route("/api/wishlist", methods=["POST"])
    @jwt_required()
    def add_to_wishlist():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        product_id = safe_int(read_json().get("productId"))
        if product_id is None:
            return jsonify({"message": "Product ID is required"}), 400

        product = db.session.get(Product, product_id)
        if product is None:
            return jsonify({"message": "Product not found"}), 404

        wishlist = find_wishlist(current_user.id)
        if wishlist is None:
            wishlist = Wishlist(user_id=current_user.id)
            db.session.add(wishlist)
            db.session.flush()

        existing = db.session.execute(
            db.select(WishlistItem.id).filter_by(wishlist_id=wishlist.id, product_id=product.id)
        ).first()
        if existing is not None:
            return jsonify({"message": "Product already in wishlist"}), 400

        db.session.add(WishlistItem(wishlist_id=wishlist.id, product_id=product.id))
        wishlist.updated_at = datetime.utcnow()
        try:
            db.session.commit()
        except IntegrityError:
            # Concurrent add of the same product hit the unique constraint.
            db.session.rollback()
            return jsonify({"message": "Product already in wishlist"}), 400

        return jsonify({"success": True, "message": "Product added to wishlist"}), 201

    @app.route("/api/wishlist", methods=["DELETE"])
    @jwt_required()
    def remove_from_wishlist():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        product_id = safe_int(read_json().get("productId"))
        if product_id is None:
            return jsonify({"message": "Product ID is required"}), 400

        wishlist = find_wishlist(current_user.id)
        if wishlist is None:
            return jsonify({"message": "Wishlist not found"}), 404

        db.session.execute(
            db.delete(WishlistItem).where(
                WishlistItem.wishlist_id == wishlist.id,
                WishlistItem.product_id == product_id,
            )
        )
        wishlist.updated_at = datetime.utcnow()
        db.session.commit()
        return jsonify({"success": True, "message": "Product removed from wishlist"})
