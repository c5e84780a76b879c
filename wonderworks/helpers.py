import math
import re
import unicodedata
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import uuid4

from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity

from .extensions import db
from .models import User

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def clean_text(value) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def slugify(value: Optional[str]) -> str:
    condensed = " ".join(str(value or "").split()).lower()
    ascii_name = (
        unicodedata.normalize("NFKD", condensed).encode("ascii", "ignore").decode("ascii")
    )
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex
    return slug


def safe_float(value, default=None):
    if isinstance(value, bool):
        return default
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_int(value, default=None):
    if isinstance(value, bool):
        return default
    if isinstance(value, float) and not value.is_integer():
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return default
        return int(numeric) if math.isfinite(numeric) and numeric.is_integer() else default


def parse_bool(value, default=False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    candidate = str(value).strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - parsed.utcoffset()
    return parsed


def parse_id_list(values) -> Optional[List[int]]:
    """Return the unique integer ids of a bulk payload in input order, or None."""
    if not isinstance(values, list) or not values:
        return None
    parsed: List[int] = []
    for value in values:
        identifier = safe_int(value)
        if identifier is None:
            return None
        if identifier not in parsed:
            parsed.append(identifier)
    return parsed


def read_json() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def parse_pagination() -> Tuple[int, int]:
    page = safe_int(request.args.get("page"), 1) or 1
    limit = safe_int(request.args.get("limit"), DEFAULT_PAGE_SIZE) or DEFAULT_PAGE_SIZE
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def get_current_user() -> Optional[User]:
    current_email = normalize_email(get_jwt_identity())
    if not current_email:
        return None
    return db.session.execute(
        db.select(User).filter_by(email=current_email)
    ).scalar_one_or_none()


def require_user():
    current_user = get_current_user()
    if current_user is None:
        return None, (jsonify({"message": "Unauthorized"}), 401)
    return current_user, None


def require_admin_user():
    current_user, error = require_user()
    if error:
        return None, error
    if not current_user.is_admin:
        return None, (jsonify({"message": "Admin access required"}), 403)
    return current_user, None


def load_or_404(model, raw_identifier, label: str):
    identifier = safe_int(raw_identifier)
    if identifier is None:
        return None, (jsonify({"message": f"Invalid {label} ID"}), 400)

    instance = db.session.get(model, identifier)
    if instance is None:
        return None, (jsonify({"message": f"{label.capitalize()} not found"}), 404)
    return instance, None
