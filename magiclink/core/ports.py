"""Port interfaces for the magic link core's external collaborators.

The issuer and redemption engine depend only on these protocols. Adapters
(JWT codec, SQL and in-memory resolvers and marker stores, email sender)
implement them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol


@dataclass(frozen=True)
class VerifiedToken:
    """Result of a successful codec verification.

    Attributes:
        claims: Exactly the claims supplied at issuance.
        token_id: Unique id of this token (single-use marker key).
        purpose: Purpose tag the token was issued for.
        issued_at: Issuance time.
        expires_at: Expiry time.
    """

    claims: dict[str, Any]
    token_id: str
    purpose: str
    issued_at: datetime
    expires_at: datetime


class TokenCodec(Protocol):
    """Signs and verifies purpose-bound, expiring tokens."""

    def issue(
        self, claims: dict[str, Any], purpose: str, lifetime: timedelta
    ) -> str:
        """Issue a signed token carrying claims.

        Raises:
            IssuanceError: If signing fails.
        """
        ...

    def verify(self, token: str, purpose: str) -> VerifiedToken:
        """Verify a token's signature, purpose, and expiry.

        Raises:
            TokenExpiredError: Token is past expiry.
            TokenInvalidError: Token is malformed, tampered, or for another purpose.
        """
        ...


class IdentityResolver(Protocol):
    """Looks up and creates accounts by identity-field value."""

    async def find_by(self, field: str, value: Any) -> Any | None:
        """Return the account whose field equals value, or None.

        Raises:
            InfrastructureError: On transient storage failure.
        """
        ...

    async def create(self, field: str, value: Any, *, confirmed_at: datetime) -> Any:
        """Create an account with field set to value.

        Raises:
            IdentityTakenError: Another account already holds the value.
            InfrastructureError: On transient storage failure.
        """
        ...

    async def confirm(self, account: Any, *, confirmed_at: datetime) -> Any:
        """Record that the account has proven ownership of its identity.

        Raises:
            InfrastructureError: On transient storage failure.
        """
        ...


class RedemptionStore(Protocol):
    """Durable single-use markers keyed by token id."""

    async def mark_redeemed(self, token_id: str, expires_at: datetime) -> bool:
        """Atomically mark a token as redeemed.

        Returns:
            True if this call set the marker, False if it was already set.

        Raises:
            InfrastructureError: On transient storage failure.
        """
        ...


class LinkSender(Protocol):
    """Delivers a token to an existing account or a bare identity value."""

    async def send(
        self, destination: Any, token: str, context: dict[str, Any]
    ) -> None:
        """Deliver the token.

        Raises:
            LinkDeliveryError: If delivery fails.
        """
        ...
