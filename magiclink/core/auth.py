"""Session hand-off after a successful magic link sign-in.

- create_jwt: signed session JWT for the authenticated account
- set_auth_cookie: httpOnly cookie carrying the session JWT
"""

from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from magiclink.core.config import settings


def _session_lifetime() -> timedelta:
    return timedelta(minutes=settings.session_lifetime_minutes)


def create_jwt(
    *,
    user_id: str,
    secret: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session JWT with standard claims.

    Args:
        user_id: User UUID string for the sub claim.
        secret: HMAC signing secret.
        expires_delta: Time until expiration. Defaults to the session lifetime.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or _session_lifetime()),
        "iat": now,
        "purpose": "session",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def set_auth_cookie(response: Response, token: str) -> None:
    """Set httpOnly JWT cookie on response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: FastAPI response object.
        token: JWT token string.
    """
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=int(_session_lifetime().total_seconds()),
        domain=settings.auth_cookie_domain or None,
    )
