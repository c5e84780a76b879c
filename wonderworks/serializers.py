from datetime import datetime
from typing import Dict, Optional

from .models import Address, Category, Order, Product, Review, User


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if not isinstance(value, datetime):
        return None
    return value.isoformat() if value.tzinfo is not None else f"{value.isoformat()}Z"


def serialize_user(user: User) -> Dict[str, object]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "isVerified": bool(user.is_verified),
        "createdAt": isoformat(user.created_at),
    }


def serialize_category(category: Category) -> Dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "nameAr": category.name_ar,
        "slug": category.slug,
        "description": category.description,
        "image": category.image,
        "createdAt": isoformat(category.created_at),
        "updatedAt": isoformat(category.updated_at),
    }


def serialize_product(product: Product, include_images: bool = True) -> Dict[str, object]:
    serialized = {
        "id": product.id,
        "name": product.name,
        "nameAr": product.name_ar,
        "description": product.description,
        "price": product.price,
        "originalPrice": product.original_price,
        "image": product.image,
        "rating": product.rating,
        "stock": product.stock,
        "inStock": bool(product.in_stock),
        "featured": bool(product.featured),
        "archived": bool(product.archived),
        "isFlashDeal": bool(product.is_flash_deal),
        "isRecommended": bool(product.is_recommended),
        "flashDealEndTime": isoformat(product.flash_deal_end_time),
        "categoryId": product.category_id,
        "category": product.category.name if product.category else None,
        "createdAt": isoformat(product.created_at),
        "updatedAt": isoformat(product.updated_at),
    }
    if include_images:
        serialized["images"] = [
            {"id": image.id, "url": image.url, "position": image.position}
            for image in product.images
        ]
    return serialized


def serialize_order(order: Order) -> Dict[str, object]:
    return {
        "id": order.id,
        "userId": order.user_id,
        "total": order.total,
        "status": order.status,
        "paymentMethod": order.payment_method,
        "shippingAddress": order.shipping_address,
        "createdAt": isoformat(order.created_at),
        "updatedAt": isoformat(order.updated_at),
        "items": [
            {
                "id": item.id,
                "productId": item.product_id,
                "name": item.product.name if item.product else "Unknown Product",
                "quantity": item.quantity,
                "price": item.price,
                "product": serialize_product(item.product, include_images=False)
                if item.product
                else None,
            }
            for item in order.items
        ],
    }


def serialize_address(address: Address) -> Dict[str, object]:
    return {
        "id": address.id,
        "type": address.type,
        "firstName": address.first_name,
        "lastName": address.last_name,
        "company": address.company,
        "address1": address.address1,
        "address2": address.address2,
        "city": address.city,
        "state": address.state,
        "postalCode": address.postal_code,
        "country": address.country,
        "phone": address.phone,
        "isDefault": bool(address.is_default),
        "createdAt": isoformat(address.created_at),
        "updatedAt": isoformat(address.updated_at),
    }


def serialize_review(review: Review) -> Dict[str, object]:
    return {
        "id": review.id,
        "productId": review.product_id,
        "author": review.author,
        "rating": review.rating,
        "comment": review.comment,
        "createdAt": isoformat(review.created_at),
    }
