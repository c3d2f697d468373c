from __future__ import annotations

import hmac

from flask import current_app, g, request

from marketescrow.config import MarketSettings
from marketescrow.errors import AdminUnauthorized, Unauthorized, ValidationError
from marketescrow.extensions import db
from marketescrow.models import User
from marketescrow.utils.jwt_utils import get_bearer_token, user_id_from_token


def market_settings() -> MarketSettings:
    return current_app.config["MARKET_SETTINGS"]


def current_user() -> User:
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        raise Unauthorized("Missing bearer token")
    uid = user_id_from_token(token)
    if uid is None:
        raise Unauthorized("Invalid or expired token")
    user = db.session.get(User, uid)
    if user is None:
        raise Unauthorized("Unknown user")
    g.auth_user_id = int(user.id)
    g.auth_actor_type = "user"
    return user


def user_actor(user: User) -> dict:
    return {"type": "user", "id": int(user.id)}


def require_admin() -> dict:
    """Check the static admin token from X-Admin-Token or a bearer header."""
    expected = (market_settings().admin_token or "").strip()
    supplied = (request.headers.get("X-Admin-Token") or "").strip()
    if not supplied:
        supplied = (get_bearer_token(request.headers.get("Authorization", "")) or "").strip()
    if not expected or not supplied:
        raise AdminUnauthorized("Admin token required")
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise AdminUnauthorized("Invalid admin token")
    g.auth_actor_type = "admin"
    return {"type": "admin", "id": None}


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("JSON object body required")
    return payload


def required_str(payload: dict, key: str, *, max_len: int = 500) -> str:
    value = str(payload.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} required")
    return value[:max_len]


def optional_version(payload: dict) -> int | None:
    raw = payload.get("expected_version")
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValidationError("expected_version must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("expected_version must be an integer")
    if value < 0:
        raise ValidationError("expected_version must be >= 0")
    return value


def required_version(payload: dict) -> int:
    value = optional_version(payload)
    if value is None:
        raise ValidationError("expected_version required")
    return value
