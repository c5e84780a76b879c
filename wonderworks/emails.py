"""
Transactional email delivery through Resend.

Every ``send_*`` helper returns ``(sent, error)`` and never raises, so a
failed delivery can be logged by the caller without unwinding the request.
"""
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import resend
from flask import current_app, render_template

from .models import Order, User

STATUS_MESSAGES = {
    "PROCESSING": "Your order is now being processed and prepared for shipping.",
    "SHIPPED": "Your order has been shipped! You can track your package using the tracking number provided.",
    "DELIVERED": "Your order has been delivered! We hope you enjoy your purchase.",
    "CANCELLED": "Your order has been cancelled. If you have any questions, please contact our support team.",
}


def send_email_via_resend(payload: Dict[str, object]) -> Tuple[bool, Optional[str]]:
    configured_api_key = (current_app.config.get("RESEND_API_KEY") or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def _build_payload(recipient: str, subject: str, html: str, text: str) -> Dict[str, object]:
    return {
        "from": current_app.config["EMAIL_SENDER"],
        "to": [recipient],
        "subject": subject,
        "html": html,
        "text": text,
    }


def send_verification_email(user: User, token: str):
    verify_url = f"{current_app.config['APP_BASE_URL']}/api/auth/verify/{token}"
    user_name = user.name or "Customer"
    html_body = render_template(
        "emails/verify_email.html", user_name=user_name, verify_url=verify_url
    )
    text_body = f"Hi {user_name}, verify your WonderWorks email here: {verify_url}"
    return send_email_via_resend(
        _build_payload(user.email, "Verify your email - WonderWorks", html_body, text_body)
    )


def send_password_reset_email(user: User, token: str):
    reset_url = f"{current_app.config['APP_BASE_URL']}/reset-password/{token}"
    user_name = user.name or "Customer"
    html_body = render_template(
        "emails/password_reset.html", user_name=user_name, reset_url=reset_url
    )
    text_body = (
        f"Hi {user_name}, reset your WonderWorks password here: {reset_url}\n"
        "If you didn't request a password reset, you can ignore this email."
    )
    return send_email_via_resend(
        _build_payload(user.email, "Reset your password - WonderWorks", html_body, text_body)
    )


def build_order_email_items(order: Order) -> List[Dict[str, object]]:
    return [
        {
            "name": item.product.name if item.product else "Item",
            "quantity": item.quantity,
            "price": round(item.price, 2),
            "line_total": round(item.price * item.quantity, 2),
        }
        for item in order.items
    ]


def send_order_confirmation_email(order: Order, shipping_address: Optional[str] = None):
    user = order.user
    if user is None or not user.email:
        return False, "Missing customer email for the order receipt."

    items = build_order_email_items(order)
    created_at = order.created_at if isinstance(order.created_at, datetime) else datetime.utcnow()
    order_url = f"{current_app.config['APP_BASE_URL']}/orders/{order.id}"
    html_body = render_template(
        "emails/order_confirmation.html",
        order_id=order.id,
        customer_name=user.name or "Customer",
        items=items,
        total=order.total,
        currency=current_app.config["CURRENCY_LABEL"],
        created_at=created_at,
        shipping_address=shipping_address or order.shipping_address or "Address not provided",
        order_url=order_url,
    )
    item_lines = ", ".join(f"{item['name']} x{item['quantity']}" for item in items)
    text_body = (
        f"Thank you for your order! Order #{order.id} on "
        f"{created_at.strftime('%Y-%m-%d %H:%M')}.\n"
        f"Items: {item_lines}.\n"
        f"Total: {order.total:.2f} {current_app.config['CURRENCY_LABEL']}.\n\n"
        "WonderWorks Team"
    )
    return send_email_via_resend(
        _build_payload(
            user.email,
            f"Order Confirmation #{order.id} - WonderWorks",
            html_body,
            text_body,
        )
    )


def send_order_status_email(order: Order):
    user = order.user
    if user is None or not user.email:
        return False, "Missing customer email for the status update."

    status_message = STATUS_MESSAGES.get(order.status, "Your order status has been updated.")
    html_body = render_template(
        "emails/order_status.html",
        order_id=order.id,
        customer_name=user.name or "Customer",
        status=order.status,
        status_message=status_message,
        order_url=f"{current_app.config['APP_BASE_URL']}/orders/{order.id}",
    )
    text_body = f"Order #{order.id} is now {order.status}. {status_message}"
    return send_email_via_resend(
        _build_payload(
            user.email,
            f"Order #{order.id} Status Update - {order.status}",
            html_body,
            text_body,
        )
    )


def notify_order_status(order: Order) -> bool:
    sent, error_details = send_order_status_email(order)
    if not sent:
        current_app.logger.error(
            "Order status email for order %s failed: %s",
            order.id,
            error_details or "Unknown delivery error",
        )
    return sent
