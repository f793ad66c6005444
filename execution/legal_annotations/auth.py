"""
JWT Session Authentication

Issues and verifies the HS256 session tokens carried as bearer tokens by the
annotation API. Sign-in flows live elsewhere; this module only deals with
the session token once a user id is known.
"""

import os
import logging
from typing import Optional
from datetime import datetime, timezone, timedelta

import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def _get_jwt_secret() -> str:
    val = os.getenv("JWT_SECRET", "")
    if not val:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate a random secret string and set it in .env or as an environment variable."
        )
    return val


def _get_jwt_expiry_hours() -> int:
    return int(os.getenv("JWT_EXPIRY_HOURS", "168"))  # 7 days default


def create_session_jwt(user_id: str, email: str, name: str = "") -> str:
    """
    Create a JWT for session authentication.

    Args:
        user_id: The profile UUID
        email: User's email
        name: User's display name

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(hours=_get_jwt_expiry_hours()),
    }
    return jwt.encode(payload, _get_jwt_secret(), algorithm=JWT_ALGORITHM)


def verify_session_jwt(token: str) -> Optional[dict]:
    """
    Verify a session JWT and extract user info.

    Returns:
        Dict with user_id, email, name if valid; None if invalid/expired
    """
    try:
        payload = jwt.decode(token, _get_jwt_secret(), algorithms=[JWT_ALGORITHM])
        return {
            "user_id": payload["sub"],
            "email": payload.get("email", ""),
            "name": payload.get("name", ""),
        }
    except jwt.ExpiredSignatureError:
        logger.debug("JWT expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"JWT invalid: {e}")
        return None
