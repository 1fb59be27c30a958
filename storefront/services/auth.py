# storefront/services/auth.py
from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from ..settings import settings
from .errors import ServiceNotConfigured

JWT_ALGORITHM = "HS256"
ADMIN_SUBJECT = "admin"


class InvalidCredentials(Exception):
    pass


def _token_secret() -> str:
    if not settings.admin_token_secret:
        raise ServiceNotConfigured("Admin login is not configured (set ADMIN_TOKEN_SECRET)")
    return settings.admin_token_secret


def check_password(password: str) -> bool:
    return hmac.compare_digest(
        (password or "").encode("utf-8"), settings.admin_password.encode("utf-8")
    )


def issue_admin_token(password: str) -> Dict[str, Any]:
    """Exchange the shared admin password for a signed, expiring token."""
    secret = _token_secret()
    if not check_password(password):
        raise InvalidCredentials("Incorrect password")
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=settings.admin_token_ttl_minutes)
    token = jwt.encode(
        {"sub": ADMIN_SUBJECT, "iat": now, "exp": expires},
        secret,
        algorithm=JWT_ALGORITHM,
    )
    return {"token": token, "expiresAt": expires.isoformat()}


def verify_admin_token(token: str) -> Dict[str, Any]:
    secret = _token_secret()
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise InvalidCredentials("Session expired") from e
    except jwt.PyJWTError as e:
        raise InvalidCredentials("Invalid token") from e
    if claims.get("sub") != ADMIN_SUBJECT:
        raise InvalidCredentials("Invalid token")
    return claims
