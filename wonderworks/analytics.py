from datetime import datetime, timedelta

from flask import Flask, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from .extensions import db
from .helpers import require_admin_user
from .models import (
    ORDER_CANCELLED,
    ROLE_CUSTOMER,
    Category,
    Order,
    OrderItem,
    Product,
    User,
    Wishlist,
    WishlistItem,
)
from .serializers import isoformat

RECENT_ORDER_LIMIT = 10
TOP_PRODUCT_LIMIT = 5
DAILY_SALES_DAYS = 7
WISHLIST_ACTIVITY_LIMIT = 10


def revenue_since(since=None, until=None) -> float:
    query = db.select(func.coalesce(func.sum(Order.total), 0)).where(
        Order.status != ORDER_CANCELLED
    )
    if since is not None:
        query = query.where(Order.created_at >= since)
    if until is not None:
        query = query.where(Order.created_at < until)
    return round(float(db.session.execute(query).scalar() or 0), 2)


def count_orders_since(since=None) -> int:
    query = db.select(func.count(Order.id)).where(Order.status != ORDER_CANCELLED)
    if since is not None:
        query = query.where(Order.created_at >= since)
    return db.session.execute(query).scalar() or 0


def collect_recent_orders():
    orders = db.session.execute(
        db.select(Order)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(RECENT_ORDER_LIMIT)
    ).scalars()
    return [
        {
            "id": order.id,
            "customerName": (order.user.name or order.user.email) if order.user else "Unknown",
            "total": order.total,
            "status": order.status,
            "date": isoformat(order.created_at),
            "itemCount": len(order.items),
        }
        for order in orders
    ]


def collect_top_products():
    units_sold = func.sum(OrderItem.quantity).label("units_sold")
    rows = db.session.execute(
        db.select(Product, units_sold)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .group_by(Product.id)
        .order_by(units_sold.desc(), Product.id)
        .limit(TOP_PRODUCT_LIMIT)
    ).all()
    return [
        {
            "id": product.id,
            "name": product.name,
            "price": product.price,
            "image": product.image,
            "totalSold": int(total_sold or 0),
        }
        for product, total_sold in rows
    ]


def collect_daily_sales(now: datetime):
    today = datetime(now.year, now.month, now.day)
    daily_sales = []
    for days_ago in range(DAILY_SALES_DAYS - 1, -1, -1):
        start_of_day = today - timedelta(days=days_ago)
        daily_sales.append(
            {
                "date": start_of_day.strftime("%Y-%m-%d"),
                "revenue": revenue_since(start_of_day, start_of_day + timedelta(days=1)),
            }
        )
    return daily_sales


def collect_wishlist_analytics():
    total_items = db.session.execute(db.select(func.count(WishlistItem.id))).scalar() or 0
    total_wishlists = db.session.execute(db.select(func.count(Wishlist.id))).scalar() or 0

    wishlist_count = func.count(WishlistItem.id).label("wishlist_count")
    top_rows = db.session.execute(
        db.select(Product.id, Product.name, wishlist_count)
        .join(WishlistItem, WishlistItem.product_id == Product.id)
        .group_by(Product.id, Product.name)
        .order_by(wishlist_count.desc(), Product.id)
        .limit(TOP_PRODUCT_LIMIT)
    ).all()

    item_count = func.count(WishlistItem.id).label("item_count")
    last_added = func.max(WishlistItem.added_at).label("last_added")
    activity_rows = db.session.execute(
        db.select(Wishlist, item_count, last_added)
        .outerjoin(WishlistItem, WishlistItem.wishlist_id == Wishlist.id)
        .group_by(Wishlist.id)
        .order_by(Wishlist.updated_at.desc(), Wishlist.id.desc())
        .limit(WISHLIST_ACTIVITY_LIMIT)
    ).all()

    return {
        "totalWishlistItems": total_items,
        "totalUsersWithWishlists": total_wishlists,
        "topWishlistedProducts": [
            {"productId": product_id, "productName": name, "wishlistCount": count}
            for product_id, name, count in top_rows
        ],
        "wishlistActivityByUser": [
            {
                "userId": wishlist.user.id,
                "userEmail": wishlist.user.email,
                "userName": wishlist.user.name,
                "wishlistItemCount": count,
                "lastActivity": isoformat(last_activity or wishlist.updated_at),
            }
            for wishlist, count, last_activity in activity_rows
        ],
    }


def register_analytics_routes(app: Flask) -> None:
    @app.route("/api/admin/analytics", methods=["GET"])
    @jwt_required()
    def admin_analytics():
        _, admin_error = require_admin_user()
        if admin_error:
            return admin_error

        now = datetime.utcnow()
        thirty_days_ago = now - timedelta(days=30)

        status_rows = db.session.execute(
            db.select(Order.status, func.count(Order.id)).group_by(Order.status)
        ).all()
        category_rows = db.session.execute(
            db.select(Category.name, func.count(Product.id))
            .join(Product, Product.category_id == Category.id)
            .group_by(Category.id, Category.name)
            .order_by(Category.name)
        ).all()

        return jsonify(
            {
                "revenue": {
                    "total": revenue_since(),
                    "monthly": revenue_since(thirty_days_ago),
                },
                "orders": {
                    "total": count_orders_since(),
                    "monthly": count_orders_since(thirty_days_ago),
                },
                "products": {
                    "total": db.session.execute(db.select(func.count(Product.id))).scalar() or 0,
                    "lowStock": db.session.execute(
                        db.select(func.count(Product.id)).filter_by(in_stock=False)
                    ).scalar()
                    or 0,
                },
                "users": {
                    "total": db.session.execute(
                        db.select(func.count(User.id)).filter_by(role=ROLE_CUSTOMER)
                    ).scalar()
                    or 0
                },
                "recentOrders": collect_recent_orders(),
                "topProducts": collect_top_products(),
                "orderStatusDistribution": [
                    {"status": status, "count": count} for status, count in status_rows
                ],
                "categoryDistribution": [
                    {"category": name, "count": count} for name, count in category_rows
                ],
                "dailySales": collect_daily_sales(now),
                "wishlistAnalytics": collect_wishlist_analytics(),
            }
        )
