from typing import Dict, Optional, Tuple

from flask import Flask, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from .extensions import db
from .helpers import clean_text, parse_bool, read_json, require_user, safe_int
from .models import ADDRESS_TYPES, Address, Wishlist, WishlistItem
from .serializers import serialize_address, serialize_user

# wire name -> (column, required)
ADDRESS_FIELDS = {
    "firstName": ("first_name", True),
    "lastName": ("last_name", True),
    "company": ("company", False),
    "address1": ("address1", True),
    "address2": ("address2", False),
    "city": ("city", True),
    "state": ("state", True),
    "postalCode": ("postal_code", True),
    "country": ("country", True),
    "phone": ("phone", False),
}


def list_user_addresses(user_id: int):
    return db.session.execute(
        db.select(Address)
        .filter_by(user_id=user_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
    ).scalars().all()


def read_address_payload(payload: Dict, partial: bool = False) -> Tuple[Optional[Dict], Optional[str]]:
    fields: Dict[str, object] = {}
    missing = []
    for key, (column, required) in ADDRESS_FIELDS.items():
        if key not in payload and column not in payload:
            if required and not partial:
                missing.append(key)
            continue
        value = clean_text(payload.get(key, payload.get(column)))
        if required and not value:
            missing.append(key)
            continue
        fields[column] = value

    if missing:
        return None, f"Missing required fields: {', '.join(missing)}"

    if "type" in payload:
        address_type = str(payload.get("type") or "").strip().upper()
        if address_type not in ADDRESS_TYPES:
            return None, "Address type must be one of HOME, WORK, OTHER"
        fields["type"] = address_type
    elif not partial:
        fields["type"] = "HOME"

    if "isDefault" in payload or "is_default" in payload:
        fields["is_default"] = parse_bool(payload.get("isDefault", payload.get("is_default")))

    return fields, None


def clear_default_addresses(user_id: int, keep_id: Optional[int] = None) -> None:
    statement = db.update(Address).where(Address.user_id == user_id)
    if keep_id is not None:
        statement = statement.where(Address.id != keep_id)
    db.session.execute(statement.values(is_default=False))


def find_owned_address(user_id: int, raw_id):
    address_id = safe_int(raw_id)
    if address_id is None:
        return None, (jsonify({"message": "Invalid address ID"}), 400)
    address = db.session.execute(
        db.select(Address).filter_by(id=address_id, user_id=user_id)
    ).scalar_one_or_none()
    if address is None:
        return None, (jsonify({"message": "Address not found"}), 404)
    return address, None


def register_profile_routes(app: Flask) -> None:
    @app.route("/api/profile", methods=["GET"])
    @jwt_required()
    def get_profile():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        wishlist_count = db.session.execute(
            db.select(func.count(WishlistItem.id))
            .join(Wishlist, Wishlist.id == WishlistItem.wishlist_id)
            .where(Wishlist.user_id == current_user.id)
        ).scalar()
        return jsonify(
            {
                "user": serialize_user(current_user),
                "addresses": [
                    serialize_address(address) for address in list_user_addresses(current_user.id)
                ],
                "wishlistCount": wishlist_count or 0,
            }
        )

    @app.route("/api/profile", methods=["PUT"])
    @jwt_required()
    def update_profile():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        payload = read_json()
        if "name" in payload:
            current_user.name = clean_text(payload.get("name"))
        db.session.commit()
        return jsonify({"message": "Profile updated", "user": serialize_user(current_user)})

    @app.route("/api/profile/addresses", methods=["GET"])
    @jwt_required()
    def list_addresses():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        return jsonify(
            [serialize_address(address) for address in list_user_addresses(current_user.id)]
        )

    @app.route("/api/profile/addresses", methods=["POST"])
    @jwt_required()
    def create_address():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        fields, validation_error = read_address_payload(read_json())
        if validation_error:
            return jsonify({"message": validation_error}), 400

        if fields.get("is_default"):
            clear_default_addresses(current_user.id)

        address = Address(user_id=current_user.id, **fields)
        db.session.add(address)
        db.session.commit()
        return jsonify(serialize_address(address)), 201

    @app.route("/api/profile/addresses/<address_id>", methods=["PUT"])
    @jwt_required()
    def update_address(address_id: str):
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        address, lookup_error = find_owned_address(current_user.id, address_id)
        if lookup_error:
            return lookup_error

        fields, validation_error = read_address_payload(read_json(), partial=True)
        if validation_error:
            return jsonify({"message": validation_error}), 400

        if fields.get("is_default"):
            clear_default_addresses(current_user.id, keep_id=address.id)

        for column, value in fields.items():
            setattr(address, column, value)
        db.session.commit()
        return jsonify(serialize_address(address))

    @app.route("/api/profile/addresses/<address_id>", methods=["DELETE"])
    @jwt_required()
    def delete_address(address_id: str):
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        address, lookup_error = find_owned_address(current_user.id, address_id)
        if lookup_error:
            return lookup_error

        db.session.delete(address)
        db.session.commit()
        return jsonify({"message": "Address deleted"})
