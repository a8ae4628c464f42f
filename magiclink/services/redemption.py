"""Magic link redemption engine.

Turns a presented token into an authenticated account or a rejection.

Steps (in order):
1. Verify signature, purpose, and expiry with the codec
2. Check the act claim against the strategy's sign-in action
3. Single-use: atomically mark the token id as redeemed (mark first,
   resolve after, never unmark)
4. Resolve the identity claim to an account, registering one when the
   strategy allows it
5. Hijacking prevention: the account must be the one the token was
   issued for

Rejections are terminal and raise a MagicLinkRejectedError subclass.
Storage failures raise InfrastructureError and may be retried by callers.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, NoReturn

from magiclink.core.magic_link_errors import (
    HijackPreventedError,
    IdentityNotFoundError,
    IdentityTakenError,
    InfrastructureError,
    InvalidOrExpiredTokenError,
    MagicLinkRejectedError,
    TokenAlreadyUsedError,
    TokenVerificationError,
    WrongActionError,
)
from magiclink.core.ports import (
    IdentityResolver,
    RedemptionStore,
    TokenCodec,
    VerifiedToken,
)
from magiclink.core.strategy import MAGIC_LINK_PURPOSE, MagicLinkStrategy

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RedemptionEngine:
    """Redeem magic link tokens for one strategy.

    Args:
        strategy: Validated strategy configuration.
        codec: Token codec used for verification.
        resolver: Account lookup and registration.
        store: Single-use marker store (consulted only when single_use).
        clock: Returns the current time; stamps registrations.
    """

    def __init__(
        self,
        strategy: MagicLinkStrategy,
        codec: TokenCodec,
        resolver: IdentityResolver,
        store: RedemptionStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.strategy = strategy
        self._codec = codec
        self._resolver = resolver
        self._store = store
        self._clock = clock or _utcnow

    async def redeem(self, token: str, context: dict[str, Any] | None = None) -> Any:
        """Redeem a presented token.

        Args:
            token: Token from the magic link.
            context: Request context (optional ``tenant``).

        Returns:
            The authenticated account. Its identity-field value matches the
            token's identity claim.

        Raises:
            InvalidOrExpiredTokenError: Bad signature, purpose, tenant, or expiry.
            WrongActionError: Token was issued for another sign-in action.
            TokenAlreadyUsedError: Single-use token redeemed before.
            IdentityNotFoundError: No account and registration is disabled.
            HijackPreventedError: Account is not the one the token targets.
            InfrastructureError: Resolver or marker store unavailable.
        """
        context = context or {}
        verified = self._verify(token, context)

        if self.strategy.single_use:
            marked = await self._store.mark_redeemed(
                verified.token_id, verified.expires_at
            )
            if not marked:
                self._reject(TokenAlreadyUsedError, verified)

        account, registered = await self._resolve(verified)
        self._check_hijacking(verified, account, registered=registered)

        # Redeeming the link proves ownership of the identity
        if (
            self.strategy.confirmed_at_field is not None
            and self.strategy.confirmed_at_of(account) is None
        ):
            account = await self._resolver.confirm(
                account, confirmed_at=self._clock()
            )

        logger.info(
            "Magic link redeemed",
            extra={
                "strategy": self.strategy.name,
                "token_id": verified.token_id,
                "account_id": str(self.strategy.primary_key_of(account)),
                "registered": registered,
            },
        )
        return account

    # =========================================================================
    # Steps
    # =========================================================================

    def _verify(self, token: str, context: dict[str, Any]) -> VerifiedToken:
        """Steps 1-2: codec verification, tenant binding, and action check."""
        try:
            verified = self._codec.verify(token, MAGIC_LINK_PURPOSE)
        except TokenVerificationError as exc:
            logger.warning(
                "Magic link rejected",
                extra={
                    "strategy": self.strategy.name,
                    "reason": InvalidOrExpiredTokenError.reason.value,
                    "detail": str(exc),
                },
            )
            raise InvalidOrExpiredTokenError() from exc

        claims = verified.claims
        if not isinstance(claims.get("identity"), str):
            self._reject(InvalidOrExpiredTokenError, verified)

        tenant = context.get("tenant")
        expected_tenant = None if tenant is None else str(tenant)
        if claims.get("tenant") != expected_tenant:
            self._reject(InvalidOrExpiredTokenError, verified)

        if claims.get("act") != self.strategy.sign_in_action_name:
            self._reject(WrongActionError, verified)
        return verified

    async def _resolve(self, verified: VerifiedToken) -> tuple[Any, bool]:
        """Step 4: find the account, or register it when allowed.

        Returns:
            (account, registered) where registered is True if this call
            created the account.
        """
        field = self.strategy.identity_field
        identity = verified.claims["identity"]

        account = await self._resolver.find_by(field, identity)
        if account is not None:
            return account, False

        if not self.strategy.registration_enabled:
            self._reject(IdentityNotFoundError, verified)

        # Account-bound token whose account no longer holds the identity
        if self.strategy.prevent_hijacking and verified.claims.get("sub") is not None:
            self._reject(HijackPreventedError, verified)

        try:
            account = await self._resolver.create(
                field, identity, confirmed_at=self._clock()
            )
        except IdentityTakenError:
            # Lost a registration race; the winner goes through the hijack check
            account = await self._resolver.find_by(field, identity)
            if account is None:
                raise InfrastructureError(
                    "Registration conflicted but no account was found"
                ) from None
            return account, False
        return account, True

    def _check_hijacking(
        self, verified: VerifiedToken, account: Any, *, registered: bool
    ) -> None:
        """Step 5: confirm the account is the one the token was issued for."""
        strategy = self.strategy
        claims = verified.claims

        # Always enforced: the returned account carries the claimed identity
        if not strategy.identity_comparison.matches(
            strategy.identity_of(account), claims["identity"]
        ):
            self._reject(HijackPreventedError, verified)

        if not strategy.prevent_hijacking or registered:
            return

        subject = claims.get("sub")
        if subject is not None:
            # Account-bound token: the identity must still belong to that account
            if str(strategy.primary_key_of(account)) != subject:
                self._reject(HijackPreventedError, verified)
            return

        # Identity-bound token: an account that appeared after issuance and
        # never proved ownership of the identity was not created by this link
        created_at = getattr(account, "created_at", None)
        if (
            created_at is not None
            and created_at > verified.issued_at
            and strategy.confirmed_at_of(account) is None
        ):
            self._reject(HijackPreventedError, verified)

    def _reject(
        self, error_cls: type[MagicLinkRejectedError], verified: VerifiedToken
    ) -> NoReturn:
        logger.warning(
            "Magic link rejected",
            extra={
                "strategy": self.strategy.name,
                "reason": error_cls.reason.value,
                "token_id": verified.token_id,
            },
        )
        raise error_cls()
