import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_jwt_extended import JWTManager
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .admin import register_admin_routes
from .analytics import register_analytics_routes
from .auth import register_auth_routes
from .cart import register_cart_routes
from .catalog import register_catalog_routes
from .cli import register_cli_commands
from .extensions import cors, db, jwt
from .orders import register_order_routes
from .profile import register_profile_routes
from .wishlist import register_wishlist_routes

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def create_app(test_config=None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so links built from the request keep the public origin.
    trusted_proxy_hops = max(0, _env_int("TRUSTED_PROXY_HOPS", 1))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config.from_mapping(
        SQLALCHEMY_DATABASE_URI=os.getenv("DATABASE_URL", "sqlite:///wonderworks.db"),
        JWT_SECRET_KEY=os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        JWT_ACCESS_TOKEN_EXPIRES=timedelta(hours=_env_int("JWT_ACCESS_TOKEN_HOURS", 24)),
        JWT_TOKEN_LOCATION=["cookies", "headers"],
        JWT_COOKIE_SECURE=_env_flag("JWT_COOKIE_SECURE", False),
        JWT_COOKIE_SAMESITE="Lax",
        JWT_COOKIE_CSRF_PROTECT=_env_flag("JWT_COOKIE_CSRF_PROTECT", True),
        APP_BASE_URL=(os.getenv("APP_BASE_URL") or "http://localhost:3000").rstrip("/"),
        RESEND_API_KEY=(os.getenv("RESEND_API_KEY") or "").strip(),
        EMAIL_SENDER=os.getenv("EMAIL_SENDER", "WonderWorks <no-reply@wonderworks.store>"),
        STRIPE_SECRET_KEY=(os.getenv("STRIPE_SECRET_KEY") or "").strip(),
        STRIPE_WEBHOOK_SECRET=(os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip(),
        STRIPE_CURRENCY=(os.getenv("STRIPE_CURRENCY") or "egp").strip().lower(),
        CURRENCY_LABEL=(os.getenv("CURRENCY_LABEL") or "EGP").strip(),
        DEFAULT_ADMIN_EMAIL=(os.getenv("DEFAULT_ADMIN_EMAIL") or "admin@wonderworks.com")
        .strip()
        .lower(),
        DEFAULT_ADMIN_PASSWORD=os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123"),
        VERIFICATION_TOKEN_HOURS=_env_int("VERIFICATION_TOKEN_HOURS", 24),
        PASSWORD_RESET_TOKEN_MINUTES=_env_int("PASSWORD_RESET_TOKEN_MINUTES", 60),
        MIN_PASSWORD_LENGTH=8,
        LOG_LEVEL=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
    if test_config:
        app.config.from_mapping(test_config)

    app.logger.setLevel(getattr(logging, app.config["LOG_LEVEL"], logging.INFO))

    # --- Initialize extensions ---
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        app.config["APP_BASE_URL"],
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    for origin in cors_extra.split(","):
        trimmed = origin.strip()
        if trimmed:
            allowed_origins.append(trimmed)

    cors.init_app(app, supports_credentials=True, origins=allowed_origins)
    db.init_app(app)
    jwt.init_app(app)
    register_jwt_callbacks(jwt)

    register_error_handlers(app)
    register_auth_routes(app)
    register_catalog_routes(app)
    register_cart_routes(app)
    register_wishlist_routes(app)
    register_order_routes(app)
    register_profile_routes(app)
    register_admin_routes(app)
    register_analytics_routes(app)
    register_cli_commands(app)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


def register_jwt_callbacks(manager: JWTManager) -> None:
    @manager.unauthorized_loader
    def missing_token(reason):
        return jsonify({"message": "Unauthorized", "details": reason}), 401

    @manager.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"message": "Unauthorized", "details": reason}), 401

    @manager.expired_token_loader
    def expired_token(_jwt_header, _jwt_payload):
        return jsonify({"message": "Session expired, please sign in again."}), 401


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return jsonify({"message": exc.description or exc.name}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception("Database error: %s", exc)
        return jsonify({"message": "Internal server error"}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"message": "Internal server error"}), 500
