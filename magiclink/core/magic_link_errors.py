"""Magic link error taxonomy.

Errors raised by the token issuer, the redemption engine, strategy
validation, and the collaborator adapters.

WHY SEPARATE ERROR CLASSES:
- Semantic rejections are terminal policy decisions, never retried
- InfrastructureError is the only retryable class
- The HTTP layer collapses every rejection into one user-facing message,
  while logs keep the specific reason
"""

from enum import StrEnum

__all__ = [
    "RejectionReason",
    "MagicLinkError",
    "StrategyConfigurationError",
    "IssuanceError",
    "InfrastructureError",
    "MagicLinkRejectedError",
    "InvalidOrExpiredTokenError",
    "WrongActionError",
    "TokenAlreadyUsedError",
    "IdentityNotFoundError",
    "HijackPreventedError",
    "TokenVerificationError",
    "TokenExpiredError",
    "TokenInvalidError",
    "IdentityTakenError",
    "LinkDeliveryError",
]


class RejectionReason(StrEnum):
    """Internal reason codes for a rejected redemption.

    For logs and telemetry only; never rendered to end users.
    """

    INVALID_OR_EXPIRED = "invalid_or_expired"
    WRONG_ACTION = "wrong_action"
    ALREADY_USED = "already_used"
    IDENTITY_NOT_FOUND = "identity_not_found"
    HIJACK_PREVENTED = "hijack_prevented"


class MagicLinkError(Exception):
    """Base class for all magic link errors."""

    pass


class StrategyConfigurationError(MagicLinkError):
    """Strategy configuration is invalid.

    Raised once at setup time. Fatal: the strategy must not be used.
    """

    pass


class IssuanceError(MagicLinkError):
    """Token could not be issued.

    No partial token is ever returned alongside this error.
    """

    pass


class InfrastructureError(MagicLinkError):
    """Transient storage or codec failure.

    WHY SEPARATE FROM REJECTIONS:
    - Says nothing about the token's validity
    - Callers may retry; rejections must not be retried
    """

    retryable = True


class MagicLinkRejectedError(MagicLinkError):
    """Redemption was refused by policy.

    Attributes:
        reason: Which check refused the token.
    """

    reason: RejectionReason

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason.value)


class InvalidOrExpiredTokenError(MagicLinkRejectedError):
    """Bad signature, tampered payload, wrong purpose, or past expiry."""

    reason = RejectionReason.INVALID_OR_EXPIRED


class WrongActionError(MagicLinkRejectedError):
    """Token was issued for a different sign-in action."""

    reason = RejectionReason.WRONG_ACTION


class TokenAlreadyUsedError(MagicLinkRejectedError):
    """Single-use token has already been redeemed."""

    reason = RejectionReason.ALREADY_USED


class IdentityNotFoundError(MagicLinkRejectedError):
    """No account matches the token's identity and registration is off."""

    reason = RejectionReason.IDENTITY_NOT_FOUND


class HijackPreventedError(MagicLinkRejectedError):
    """Resolved account is not the one the token was issued for."""

    reason = RejectionReason.HIJACK_PREVENTED


# =============================================================================
# Collaborator errors (raised by adapters, translated by the core)
# =============================================================================


class TokenVerificationError(MagicLinkError):
    """Codec refused a token."""

    pass


class TokenExpiredError(TokenVerificationError):
    """Token is past its expiry."""

    pass


class TokenInvalidError(TokenVerificationError):
    """Token is malformed, tampered with, or bound to another purpose."""

    pass


class IdentityTakenError(MagicLinkError):
    """Account creation lost a race on the identity unique constraint."""

    pass


class LinkDeliveryError(MagicLinkError):
    """Link sender could not deliver a token."""

    pass
