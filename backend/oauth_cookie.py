"""Signed cookie holding a pending headless OAuth connection."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

COOKIE_NAME = "pioneer_oauth_pending"
COOKIE_MAX_AGE_SECONDS = 600
ALGORITHM = "HS256"

_FIELDS = (
    "platform",
    "step",
    "profile_id",
    "temp_token",
    "connect_token",
    "user_profile",
    "pending_data_token",
    "public_profiles",
)


def encode_pending(data: dict, secret: str) -> str:
    payload = {k: data.get(k) for k in _FIELDS if data.get(k) is not None}
    payload["exp"] = datetime.now(timezone.utc) + timedelta(seconds=COOKIE_MAX_AGE_SECONDS)
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_pending(token: Optional[str], secret: str) -> Optional[dict]:
    """Return the pending OAuth data, or None when missing, tampered or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.info("oauth_cookie.invalid", extra={"error": str(exc)})
        return None
    if not payload.get("platform"):
        return None
    return {k: payload.get(k) for k in _FIELDS}


def set_pending_cookie(response, data: dict, settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        encode_pending(data, settings.oauth_cookie_secret),
        max_age=COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.oauth_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_pending_cookie(response, settings) -> None:
    response.set_cookie(
        COOKIE_NAME,
        "",
        max_age=0,
        httponly=True,
        secure=settings.oauth_cookie_secure,
        samesite="lax",
        path="/",
    )
