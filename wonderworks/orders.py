"""
Checkout: order placement from the cart, card payment intents and the
payment provider webhook that moves orders out of PENDING.
"""
import stripe
from flask import Flask, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError

from .emails import notify_order_status, send_order_confirmation_email
from .extensions import db
from .helpers import clean_text, load_or_404, read_json, require_user, safe_int
from .models import (
    ORDER_CANCELLED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    PAYMENT_COD,
    PAYMENT_CREDIT_CARD,
    Address,
    Cart,
    CartItem,
    Order,
    OrderItem,
    User,
)
from .payments import (
    PaymentConfigurationError,
    PaymentProviderError,
    create_payment_intent,
    extract_order_id,
    parse_event,
    require_webhook_secret,
)
from .serializers import serialize_order

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


def format_address(address: Address) -> str:
    street = ", ".join(part for part in (address.address1, address.address2) if part)
    parts = [
        f"{address.first_name} {address.last_name}".strip(),
        street,
        f"{address.city}, {address.state} {address.postal_code}".strip(),
        address.country,
    ]
    return ", ".join(part for part in parts if part)


def resolve_shipping_address(user: User, raw_address):
    address = clean_text(raw_address)
    if address:
        return address
    default_address = db.session.execute(
        db.select(Address).filter_by(user_id=user.id, is_default=True).limit(1)
    ).scalar_one_or_none()
    return format_address(default_address) if default_address else None


def place_order(user: User, cart: Cart, shipping_address, payment_method: str) -> Order:
    """Turn the cart into an order, copying current prices, and empty the cart.

    The caller owns the transaction: nothing is committed here.
    """
    total = round(sum(item.product.price * item.quantity for item in cart.items), 2)
    order = Order(
        user_id=user.id,
        total=total,
        status=ORDER_PENDING,
        payment_method=payment_method,
        shipping_address=shipping_address,
    )
    db.session.add(order)
    db.session.flush()

    for item in cart.items:
        db.session.add(
            OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.product.price,
            )
        )
    db.session.execute(db.delete(CartItem).where(CartItem.cart_id == cart.id))
    return order


def apply_payment_event(app: Flask, event_type: str, order: Order) -> bool:
    """Move ``order`` according to a payment event. Returns True when it changed."""
    if event_type == EVENT_PAYMENT_SUCCEEDED:
        if order.status == ORDER_PENDING:
            order.status = ORDER_PROCESSING
            return True
        if order.status == ORDER_PROCESSING:
            app.logger.info("Payment success for order %s already applied", order.id)
        else:
            app.logger.warning(
                "Ignoring payment success for order %s in status %s", order.id, order.status
            )
        return False

    if order.status in (ORDER_PENDING, ORDER_PROCESSING):
        order.status = ORDER_CANCELLED
        return True
    app.logger.warning(
        "Ignoring payment failure for order %s in status %s", order.id, order.status
    )
    return False


def register_order_routes(app: Flask) -> None:
    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        orders = db.session.execute(
            db.select(Order)
            .filter_by(user_id=current_user.id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        ).scalars()
        return jsonify([serialize_order(order) for order in orders])

    @app.route("/api/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        order, load_error = load_or_404(Order, order_id, "order")
        if load_error:
            return load_error
        if order.user_id != current_user.id:
            return jsonify({"message": "Order not found"}), 404
        return jsonify(serialize_order(order))

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def create_order():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        payload = read_json()
        cart = db.session.execute(
            db.select(Cart).filter_by(user_id=current_user.id)
        ).scalar_one_or_none()
        if cart is None or not cart.items:
            return jsonify({"message": "Cart is empty"}), 400

        payment_method = (
            PAYMENT_COD
            if str(payload.get("paymentMethod") or "").strip().upper() == PAYMENT_COD
            else PAYMENT_CREDIT_CARD
        )
        shipping_address = resolve_shipping_address(current_user, payload.get("address"))

        try:
            order = place_order(current_user, cart, shipping_address, payment_method)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            app.logger.error("Order creation failed for %s: %s", current_user.email, exc)
            return jsonify({"message": "Failed to create order"}), 500

        app.logger.info(
            "Order %s created for %s (total %.2f, %s)",
            order.id,
            current_user.email,
            order.total,
            payment_method,
        )

        sent, error_details = send_order_confirmation_email(order, shipping_address)
        if not sent:
            app.logger.error(
                "Order confirmation email for order %s failed: %s",
                order.id,
                error_details or "Unknown delivery error",
            )

        return jsonify({"id": order.id}), 201

    @app.route("/api/payment/create-intent", methods=["POST"])
    @jwt_required()
    def create_intent():
        current_user, auth_error = require_user()
        if auth_error:
            return auth_error

        order_id = safe_int(read_json().get("orderId"))
        if order_id is None:
            return jsonify({"message": "Missing orderId"}), 400

        order = db.session.get(Order, order_id)
        if order is None or order.user_id != current_user.id:
            return jsonify({"message": "Order not found"}), 404
        if order.status != ORDER_PENDING:
            return jsonify({"message": "Order is not awaiting payment"}), 400

        try:
            intent = create_payment_intent(order, current_user)
        except PaymentConfigurationError as exc:
            app.logger.error("Payment intent for order %s refused: %s", order.id, exc)
            return jsonify({"message": str(exc)}), 500
        except PaymentProviderError as exc:
            app.logger.error("Payment intent for order %s failed: %s", order.id, exc)
            return jsonify({"message": "Payment provider error"}), 502

        order.payment_intent_id = intent.id
        db.session.commit()
        return jsonify({"clientSecret": intent.client_secret})

    @app.route("/api/payment/webhook", methods=["POST"])
    def payment_webhook():
        try:
            require_webhook_secret()
        except PaymentConfigurationError as exc:
            app.logger.error("Webhook rejected: %s", exc)
            return jsonify({"message": str(exc)}), 500

        signature = request.headers.get("Stripe-Signature")
        if not signature:
            app.logger.warning("Webhook rejected: missing Stripe-Signature header")
            return jsonify({"message": "Missing signature"}), 400

        payload = request.get_data(as_text=True)
        try:
            event = parse_event(payload, signature)
        except stripe.SignatureVerificationError as exc:
            app.logger.warning("Webhook signature verification failed: %s", exc)
            return jsonify({"message": "Invalid signature"}), 400
        except ValueError as exc:
            app.logger.warning("Webhook payload could not be parsed: %s", exc)
            return jsonify({"message": "Invalid payload"}), 400

        event_type = event.get("type")
        if event_type not in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED):
            app.logger.debug("Ignoring webhook event %s", event_type)
            return jsonify({"received": True})

        order_id = safe_int(extract_order_id(event))
        order = db.session.get(Order, order_id) if order_id is not None else None
        if order is None:
            app.logger.warning(
                "Webhook %s references unknown order %s", event_type, extract_order_id(event)
            )
            return jsonify({"received": True})

        previous_status = order.status
        if apply_payment_event(app, event_type, order):
            db.session.commit()
            app.logger.info(
                "Order %s moved from %s to %s by %s",
                order.id,
                previous_status,
                order.status,
                event_type,
            )
            notify_order_status(order)

        return jsonify({"received": True})
