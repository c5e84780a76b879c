"""
Back-office endpoints: category, product, order and user management plus
the bulk actions used by the admin tables. Every route requires an ADMIN.
"""
import math
from typing import Iterable, List

from flask import Flask, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from .catalog import (
    apply_product_fields,
    find_category_conflict,
    is_product_ordered,
    recompute_product_rating,
    validate_product_payload,
)
from .emails import notify_order_status
from .extensions import db
from .helpers import (
    clean_text,
    load_or_404,
    parse_bool,
    parse_id_list,
    parse_pagination,
    read_json,
    require_admin_user,
    slugify,
)
from .models import (
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    USER_ROLES,
    Category,
    Order,
    OrderItem,
    Product,
    Review,
    User,
)
from .serializers import serialize_category, serialize_order, serialize_product, serialize_user

BULK_ORDER_STATUS = {
    "cancel": ORDER_CANCELLED,
    "markShipped": ORDER_SHIPPED,
    "markDelivered": ORDER_DELIVERED,
}
BULK_USER_ROLE = {"makeAdmin": ROLE_ADMIN, "makeCustomer": ROLE_CUSTOMER}


def read_bulk_request(allowed_actions: Iterable[str]):
    payload = read_json()
    action = str(payload.get("action") or "").strip()
    if action not in allowed_actions:
        return None, None, (jsonify({"message": "Invalid action"}), 400)
    ids = parse_id_list(payload.get("ids"))
    if ids is None:
        return None, None, (jsonify({"message": "ids must be a non-empty list of IDs"}), 400)
    return ids, action, None


def referenced_ids(column, ids: List[int]) -> List[int]:
    """Return the members of ``ids`` that appear in ``column``, in input order."""
    found = set(db.session.execute(db.select(column).where(column.in_(ids)).distinct()).scalars())
    return [identifier for identifier in ids if identifier in found]


def delete_by_ids(model, ids: List[int]) -> None:
    # Loaded through the ORM so relationship cascades run.
    for instance in db.session.execute(db.select(model).where(model.id.in_(ids))).scalars():
        db.session.delete(instance)


def paginate(query, page: int, limit: int):
    total = db.session.execute(
        db.select(func.count()).select_from(query.order_by(None).subquery())
    ).scalar()
    rows = db.session.execute(query.offset((page - 1) * limit).limit(limit)).scalars().all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
    return rows, pagination


def serialize_admin_order(order: Order):
    serialized = serialize_order(order)
    serialized["user"] = (
        {"id": order.user.id, "name": order.user.name, "email": order.user.email}
        if order.user
        else None
    )
    return serialized


def serialize_admin_user(user: User, order_count: int = 0):
    serialized = serialize_user(user)
    serialized["orderCount"] = order_count
    return serialized


def read_category_fields(payload) -> tuple:
    name = " ".join(str(payload.get("name") or "").split())
    raw_slug = clean_text(payload.get("slug"))
    if not name or not raw_slug:
        return None, "Name and slug are required"
    return (
        {
            "name": name,
            "slug": slugify(raw_slug),
            "name_ar": clean_text(payload.get("nameAr")),
            "description": clean_text(payload.get("description")),
            "image": clean_text(payload.get("image")),
        },
        None,
    )


def category_has_products(category_id: int) -> bool:
    return (
        db.session.execute(
            db.select(Product.id).filter_by(category_id=category_id).limit(1)
        ).first()
        is not None
    )


def register_admin_routes(app: Flask) -> None:
    # Categories
    @app.route("/api/admin/categories", methods=["GET"])
    @jwt_required()
    def admin_list_categories():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product_counts = dict(
            db.session.execute(
                db.select(Product.category_id, func.count(Product.id)).group_by(
                    Product.category_id
                )
            ).all()
        )
        categories = db.session.execute(db.select(Category).order_by(Category.name)).scalars()
        serialized = []
        for category in categories:
            entry = serialize_category(category)
            entry["productCount"] = product_counts.get(category.id, 0)
            serialized.append(entry)
        return jsonify(serialized)

    @app.route("/api/admin/categories", methods=["POST"])
    @jwt_required()
    def admin_create_category():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        fields, validation_error = read_category_fields(read_json())
        if validation_error:
            return jsonify({"message": validation_error}), 400
        if find_category_conflict(fields["name"], fields["slug"]):
            return jsonify({"message": "Category with this name or slug already exists"}), 409

        category = Category(**fields)
        db.session.add(category)
        db.session.commit()
        return jsonify(serialize_category(category)), 201

    @app.route("/api/admin/categories", methods=["PUT"])
    @jwt_required()
    def admin_update_category():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        category, load_error = load_or_404(Category, payload.get("id"), "category")
        if load_error:
            return load_error

        fields, validation_error = read_category_fields(payload)
        if validation_error:
            return jsonify({"message": validation_error}), 400
        if find_category_conflict(fields["name"], fields["slug"], exclude_id=category.id):
            return jsonify({"message": "Category with this name or slug already exists"}), 409

        for column, value in fields.items():
            setattr(category, column, value)
        db.session.commit()
        return jsonify(serialize_category(category))

    @app.route("/api/admin/categories", methods=["DELETE"])
    @jwt_required()
    def admin_delete_category():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        category, load_error = load_or_404(Category, read_json().get("id"), "category")
        if load_error:
            return load_error
        if category_has_products(category.id):
            return (
                jsonify({"message": "Cannot delete category that still has products"}),
                409,
            )

        db.session.delete(category)
        db.session.commit()
        return jsonify({"message": "Category deleted successfully"})

    @app.route("/api/admin/categories/bulk", methods=["POST"])
    @jwt_required()
    def admin_bulk_categories():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        ids, _, bulk_error = read_bulk_request(("delete",))
        if bulk_error:
            return bulk_error

        blocked = referenced_ids(Product.category_id, ids)
        deleted = [identifier for identifier in ids if identifier not in blocked]
        if deleted:
            delete_by_ids(Category, deleted)
            db.session.commit()

        app.logger.info(
            "Admin %s bulk-deleted categories %s (blocked %s)", admin_user.email, deleted, blocked
        )
        return jsonify(
            {
                "message": f"Deleted {len(deleted)} categories, {len(blocked)} blocked",
                "deleted": deleted,
                "blocked": blocked,
            }
        )

    # Products
    @app.route("/api/admin/products", methods=["GET"])
    @jwt_required()
    def admin_list_products():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        archived = parse_bool(request.args.get("archived"), False)
        products = db.session.execute(
            db.select(Product).filter_by(archived=archived).order_by(Product.created_at.desc(), Product.id.desc())
        ).scalars()
        return jsonify([serialize_product(product) for product in products])

    @app.route("/api/admin/products", methods=["POST"])
    @jwt_required()
    def admin_create_product():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        payload.setdefault("stock", 0)
        fields, validation_error = validate_product_payload(payload)
        if validation_error:
            return jsonify({"message": validation_error}), 400

        product = apply_product_fields(Product(), fields)
        db.session.add(product)
        db.session.commit()
        return jsonify(serialize_product(product)), 201

    @app.route("/api/admin/products", methods=["PUT"])
    @jwt_required()
    def admin_update_product():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        product, load_error = load_or_404(Product, payload.get("id"), "product")
        if load_error:
            return load_error

        fields, validation_error = validate_product_payload(payload)
        if validation_error:
            return jsonify({"message": validation_error}), 400

        apply_product_fields(product, fields)
        db.session.commit()
        return jsonify(serialize_product(product))

    @app.route("/api/admin/products", methods=["DELETE"])
    @jwt_required()
    def admin_delete_product():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        product, load_error = load_or_404(Product, read_json().get("id"), "product")
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

    @app.route("/api/admin/products/bulk", methods=["POST"])
    @jwt_required()
    def admin_bulk_products():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        ids, action, bulk_error = read_bulk_request(("delete", "feature", "unfeature"))
        if bulk_error:
            return bulk_error

        if action == "delete":
            blocked = referenced_ids(OrderItem.product_id, ids)
            deleted = [identifier for identifier in ids if identifier not in blocked]
            if deleted:
                delete_by_ids(Product, deleted)
                db.session.commit()
            app.logger.info(
                "Admin %s bulk-deleted products %s (blocked %s)",
                admin_user.email,
                deleted,
                blocked,
            )
            message = f"Deleted {len(deleted)} products"
            if blocked:
                message += f", {len(blocked)} blocked because they have been ordered"
            return jsonify({"message": message, "deleted": deleted, "blocked": blocked})

        featured = action == "feature"
        result = db.session.execute(
            db.update(Product).where(Product.id.in_(ids)).values(featured=featured)
        )
        db.session.commit()
        return jsonify(
            {
                "message": f"{'Featured' if featured else 'Unfeatured'} {result.rowcount} products",
                "updated": result.rowcount,
            }
        )

    # Orders
    @app.route("/api/admin/orders", methods=["GET"])
    @jwt_required()
    def admin_list_orders():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page, limit = parse_pagination()
        query = db.select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        status = str(request.args.get("status") or "").strip().upper()
        if status and status != "ALL":
            if status not in ORDER_STATUSES:
                return jsonify({"message": "Invalid status"}), 400
            query = query.filter_by(status=status)

        orders, pagination = paginate(query, page, limit)
        return jsonify(
            {
                "orders": [serialize_admin_order(order) for order in orders],
                "pagination": pagination,
            }
        )

    @app.route("/api/admin/orders", methods=["PUT"])
    @jwt_required()
    def admin_update_order():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        status = str(payload.get("status") or "").strip().upper()
        if payload.get("orderId") is None or not status:
            return jsonify({"message": "Order ID and status are required"}), 400
        if status not in ORDER_STATUSES:
            return jsonify({"message": "Invalid status"}), 400

        order, load_error = load_or_404(Order, payload.get("orderId"), "order")
        if load_error:
            return load_error

        previous_status = order.status
        order.status = status
        db.session.commit()
        app.logger.info(
            "Admin %s moved order %s from %s to %s",
            admin_user.email,
            order.id,
            previous_status,
            status,
        )

        if previous_status != status:
            notify_order_status(order)
        return jsonify({"message": "Order status updated", "order": serialize_admin_order(order)})

    @app.route("/api/admin/orders/bulk", methods=["POST"])
    @jwt_required()
    def admin_bulk_orders():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        ids, action, bulk_error = read_bulk_request(("delete", *BULK_ORDER_STATUS))
        if bulk_error:
            return bulk_error

        if action == "delete":
            existing = referenced_ids(Order.id, ids)
            delete_by_ids(Order, existing)
            db.session.commit()
            app.logger.info("Admin %s bulk-deleted orders %s", admin_user.email, existing)
            return jsonify(
                {"message": f"Deleted {len(existing)} orders", "deleted": existing}
            )

        status = BULK_ORDER_STATUS[action]
        result = db.session.execute(
            db.update(Order).where(Order.id.in_(ids)).values(status=status)
        )
        db.session.commit()
        app.logger.info(
            "Admin %s bulk-set orders %s to %s", admin_user.email, ids, status
        )
        return jsonify(
            {"message": f"Updated {result.rowcount} orders to {status}", "updated": result.rowcount}
        )

    # Users
    @app.route("/api/admin/users", methods=["GET"])
    @jwt_required()
    def admin_list_users():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        page, limit = parse_pagination()
        query = db.select(User).order_by(User.created_at.desc(), User.id.desc())
        role = str(request.args.get("role") or "").strip().upper()
        if role and role != "ALL":
            if role not in USER_ROLES:
                return jsonify({"message": "Invalid role"}), 400
            query = query.filter_by(role=role)

        users, pagination = paginate(query, page, limit)
        order_counts = dict(
            db.session.execute(
                db.select(Order.user_id, func.count(Order.id))
                .where(Order.user_id.in_([user.id for user in users]))
                .group_by(Order.user_id)
            ).all()
        ) if users else {}

        role_counts = dict(
            db.session.execute(db.select(User.role, func.count(User.id)).group_by(User.role)).all()
        )
        active_users = db.session.execute(
            db.select(func.count(User.id)).filter_by(is_verified=True)
        ).scalar()

        return jsonify(
            {
                "users": [
                    serialize_admin_user(user, order_counts.get(user.id, 0)) for user in users
                ],
                "pagination": pagination,
                "stats": {
                    "totalCustomers": role_counts.get(ROLE_CUSTOMER, 0),
                    "totalAdmins": role_counts.get(ROLE_ADMIN, 0),
                    "activeUsers": active_users or 0,
                },
            }
        )

    @app.route("/api/admin/users", methods=["PUT"])
    @jwt_required()
    def admin_update_user_role():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        payload = read_json()
        role = str(payload.get("role") or "").strip().upper()
        if role not in USER_ROLES:
            return jsonify({"message": "Role must be ADMIN or CUSTOMER"}), 400

        user, load_error = load_or_404(User, payload.get("userId"), "user")
        if load_error:
            return load_error
        if user.id == admin_user.id and role != ROLE_ADMIN:
            return jsonify({"message": "You cannot remove your own admin role"}), 400

        user.role = role
        db.session.commit()
        app.logger.info("Admin %s set role of %s to %s", admin_user.email, user.email, role)
        return jsonify({"message": f"Role updated to {role}", "user": serialize_admin_user(user)})

    @app.route("/api/admin/users/bulk", methods=["POST"])
    @jwt_required()
    def admin_bulk_users():
        admin_user, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        ids, action, bulk_error = read_bulk_request(("delete", *BULK_USER_ROLE))
        if bulk_error:
            return bulk_error

        skipped: List[int] = [admin_user.id] if admin_user.id in ids else []
        if action == "makeAdmin":
            skipped = []
        targets = [identifier for identifier in ids if identifier not in skipped]

        if action == "delete":
            existing = referenced_ids(User.id, targets)
            reviewed = db.session.execute(
                db.select(Product).where(
                    Product.id.in_(
                        db.select(Review.product_id).where(Review.user_id.in_(existing))
                    )
                )
            ).scalars().all()
            delete_by_ids(User, existing)
            db.session.flush()
            for product in reviewed:
                recompute_product_rating(product)
            db.session.commit()
            app.logger.info("Admin %s bulk-deleted users %s", admin_user.email, existing)
            return jsonify(
                {
                    "message": f"Deleted {len(existing)} users",
                    "deleted": existing,
                    "skipped": skipped,
                }
            )

        role = BULK_USER_ROLE[action]
        updated = 0
        if targets:
            result = db.session.execute(
                db.update(User).where(User.id.in_(targets)).values(role=role)
            )
            updated = result.rowcount
            db.session.commit()
        app.logger.info("Admin %s bulk-set users %s to %s", admin_user.email, targets, role)
        return jsonify(
            {
                "message": f"Updated {updated} users to {role}",
                "updated": updated,
                "skipped": skipped,
            }
        )
