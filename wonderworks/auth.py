import secrets
from datetime import datetime, timedelta

from flask import Flask, current_app, jsonify, redirect
from flask_jwt_extended import create_access_token, set_access_cookies, unset_jwt_cookies

from .emails import send_password_reset_email, send_verification_email
from .extensions import db
from .helpers import is_valid_email, normalize_email, read_json
from .models import ROLE_CUSTOMER, PasswordResetToken, User, VerificationToken
from .serializers import serialize_user

RESET_REQUEST_MESSAGE = "If the email exists, a reset link will be sent"


def generate_token() -> str:
    return secrets.token_hex(32)


def find_user_by_email(email: str):
    return db.session.execute(db.select(User).filter_by(email=email)).scalar_one_or_none()


def issue_verification_token(user: User) -> str:
    token = generate_token()
    expires = datetime.utcnow() + timedelta(
        hours=current_app.config["VERIFICATION_TOKEN_HOURS"]
    )
    db.session.add(VerificationToken(token=token, user_id=user.id, expires=expires))
    db.session.commit()
    return token


def issue_password_reset_token(user: User) -> str:
    token = generate_token()
    expires = datetime.utcnow() + timedelta(
        minutes=current_app.config["PASSWORD_RESET_TOKEN_MINUTES"]
    )
    db.session.add(PasswordResetToken(token=token, user_id=user.id, expires=expires))
    db.session.commit()
    return token


def register_auth_routes(app: Flask) -> None:
    min_password_length = app.config["MIN_PASSWORD_LENGTH"]

    @app.route("/api/register", methods=["POST"])
    def register():
        payload = read_json()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")
        name = str(payload.get("name") or "").strip() or None

        if not email or not password:
            app.logger.info("Registration rejected: email and password required")
            return jsonify({"message": "Email and password required"}), 400

        if not is_valid_email(email):
            app.logger.info("Registration rejected: invalid email format %s", email)
            return jsonify({"message": "Invalid email format"}), 400

        if find_user_by_email(email):
            app.logger.info("Registration rejected: email already in use %s", email)
            return jsonify({"message": "Email already in use"}), 400

        if len(password) < min_password_length:
            return (
                jsonify(
                    {
                        "message": f"Password must be at least {min_password_length} characters long"
                    }
                ),
                400,
            )

        user = User(email=email, name=name, role=ROLE_CUSTOMER, is_verified=False)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()

        token = issue_verification_token(user)
        sent, error_details = send_verification_email(user, token)
        if not sent:
            app.logger.error(
                "Verification email delivery failed for %s: %s",
                email,
                error_details or "Unknown delivery error",
            )

        return (
            jsonify(
                {
                    "message": "Registration successful. Please verify your email.",
                    "userId": user.id,
                }
            ),
            201,
        )

    @app.route("/api/auth/verify/<token>", methods=["GET"])
    def verify_email(token: str):
        record = db.session.execute(
            db.select(VerificationToken).filter_by(token=token)
        ).scalar_one_or_none()
        if record is None or record.expires < datetime.utcnow():
            return jsonify({"message": "Token invalid or expired"}), 400

        user = db.session.get(User, record.user_id)
        if user is not None:
            user.is_verified = True
        db.session.delete(record)
        db.session.commit()

        return redirect(f"{app.config['APP_BASE_URL']}/login?verified=1")

    @app.route("/api/login", methods=["POST"])
    def login():
        payload = read_json()
        email = normalize_email(payload.get("email"))
        password = str(payload.get("password") or "")

        if not email or not password:
            return jsonify({"message": "Email and password are required."}), 400

        user = find_user_by_email(email)
        if user is None or not user.check_password(password):
            return jsonify({"message": "Invalid credentials"}), 401

        if not user.is_verified:
            return (
                jsonify(
                    {
                        "message": "Please verify your email before logging in.",
                        "requiresVerification": True,
                    }
                ),
                403,
            )

        token = create_access_token(identity=user.email, additional_claims={"role": user.role})
        response = jsonify({"accessToken": token, "user": serialize_user(user)})
        set_access_cookies(response, token)
        return response

    @app.route("/api/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "Signed out"})
        unset_jwt_cookies(response)
        return response

    @app.route("/api/auth/reset/request", methods=["POST"])
    def request_password_reset():
        payload = read_json()
        email = normalize_email(payload.get("email"))
        if not email:
            return jsonify({"message": "Email required"}), 400

        user = find_user_by_email(email)
        if user is None:
            return jsonify({"message": RESET_REQUEST_MESSAGE})

        token = issue_password_reset_token(user)
        sent, error_details = send_password_reset_email(user, token)
        if not sent:
            app.logger.error(
                "Password reset email delivery failed for %s: %s",
                email,
                error_details or "Unknown delivery error",
            )

        return jsonify({"message": RESET_REQUEST_MESSAGE})

    @app.route("/api/auth/reset/<token>", methods=["POST"])
    def reset_password(token: str):
        payload = read_json()
        password = str(payload.get("password") or "")
        if not password:
            return jsonify({"message": "Password required"}), 400

        record = db.session.execute(
            db.select(PasswordResetToken).filter_by(token=token)
        ).scalar_one_or_none()
        if record is None or record.expires < datetime.utcnow():
            return jsonify({"message": "Token invalid or expired"}), 400

        if len(password) < min_password_length:
            return (
                jsonify(
                    {
                        "message": f"Password must be at least {min_password_length} characters long"
                    }
                ),
                400,
            )

        user = db.session.get(User, record.user_id)
        if user is not None:
            user.set_password(password)
        db.session.delete(record)
        db.session.commit()

        return jsonify({"message": "Password updated successfully"})
