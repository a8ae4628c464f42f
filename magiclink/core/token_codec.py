"""Signed token codec for magic link tokens.

HS256 JWTs via PyJWT. The codec owns the registered claims (jti, iat, exp,
iss, aud, purpose); callers own everything else and get it back unchanged
from verify().

Expiry is checked against the codec's clock rather than PyJWT's so that
issuance and verification always agree on "now".
"""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from magiclink.core.config import Settings
from magiclink.core.magic_link_errors import (
    IssuanceError,
    TokenExpiredError,
    TokenInvalidError,
)
from magiclink.core.ports import VerifiedToken

logger = logging.getLogger(__name__)

# Claims the codec sets itself. Caller claims may not use these names.
RESERVED_CLAIMS: frozenset[str] = frozenset(
    {"jti", "iat", "exp", "nbf", "iss", "aud", "purpose"}
)

_REQUIRED_CLAIMS = ["jti", "iat", "exp", "purpose"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JwtTokenCodec:
    """Issue and verify purpose-bound JWTs.

    Args:
        secret: HMAC signing secret.
        issuer: Value of the iss claim.
        audience: Value of the aud claim.
        algorithm: JWS algorithm. Defaults to HS256.
        clock: Returns the current time. Defaults to UTC wall clock.
    """

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        audience: str,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._audience = audience
        self._algorithm = algorithm
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtTokenCodec":
        """Build a codec from application settings."""
        return cls(
            secret=settings.auth_secret.get_secret_value(),
            issuer=settings.auth_issuer,
            audience=settings.auth_audience,
        )

    def issue(
        self, claims: dict[str, Any], purpose: str, lifetime: timedelta
    ) -> str:
        """Issue a signed token.

        Args:
            claims: Caller claims, returned unchanged by verify().
            purpose: Purpose tag the token is bound to.
            lifetime: Time until the token expires.

        Returns:
            Encoded JWT string.

        Raises:
            IssuanceError: If claims collide with reserved names, no secret
                is configured, or signing fails.
        """
        collisions = RESERVED_CLAIMS & claims.keys()
        if collisions:
            msg = f"Claims use reserved names: {', '.join(sorted(collisions))}"
            raise IssuanceError(msg)
        if not self._secret:
            raise IssuanceError("Token signing secret is not configured")

        now = self._clock()
        payload = {
            **claims,
            "jti": uuid.uuid4().hex,
            "iat": now.timestamp(),
            "exp": (now + lifetime).timestamp(),
            "iss": self._issuer,
            "aud": self._audience,
            "purpose": purpose,
        }
        try:
            return jwt.encode(payload, self._secret, algorithm=self._algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            logger.warning("Token signing failed", extra={"purpose": purpose})
            raise IssuanceError("Token signing failed") from exc

    def verify(self, token: str, purpose: str) -> VerifiedToken:
        """Verify signature, audience, issuer, purpose, and expiry.

        Args:
            token: Encoded JWT string.
            purpose: Purpose the token must have been issued for.

        Returns:
            VerifiedToken carrying exactly the caller claims from issuance.

        Raises:
            TokenExpiredError: Token is past its expiry.
            TokenInvalidError: Any other verification failure.
        """
        if not self._secret:
            raise TokenInvalidError("Token signing secret is not configured")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": _REQUIRED_CLAIMS,
                },
            )
        except jwt.PyJWTError as exc:
            raise TokenInvalidError("Token failed verification") from exc

        # Purpose binding: a valid token for any other purpose is rejected
        if payload["purpose"] != purpose:
            raise TokenInvalidError("Token was issued for a different purpose")

        issued_at = _to_datetime(payload["iat"])
        expires_at = _to_datetime(payload["exp"])
        if self._clock() > expires_at:
            raise TokenExpiredError("Token has expired")

        return VerifiedToken(
            claims={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
            token_id=str(payload["jti"]),
            purpose=purpose,
            issued_at=issued_at,
            expires_at=expires_at,
        )


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise TokenInvalidError("Token timestamp claims must be numeric")
    try:
        return datetime.fromtimestamp(value, UTC)
    except (OverflowError, OSError, ValueError) as exc:
        raise TokenInvalidError("Token timestamp claims are out of range") from exc
