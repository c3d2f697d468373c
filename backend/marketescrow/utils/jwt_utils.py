import os
import time
import logging
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

ACCESS_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_access_token(user_id: int, ttl_seconds: int = ACCESS_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(int(user_id)),
        "iat": now,
        "exp": now + int(ttl_seconds),
        "type": "access",
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def user_id_from_token(token: str) -> Optional[int]:
    """Market user id carried in a valid access token, else None."""
    try:
        payload = jwt.decode(token, _secret(), algorithms=["HS256"], options={"require": ["sub", "exp"]})
    except jwt.PyJWTError as e:
        logger.info("jwt_rejected reason=%s", type(e).__name__)
        return None
    if payload.get("type", "access") != "access":
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def get_bearer_token(auth_header: str) -> Optional[str]:
    parts = (auth_header or "").split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None
