"""Magic link token issuance.

Builds the claim set for a sign-in token and asks the codec to sign it.
Tokens are bound either to an existing account (sub = primary key) or to
a bare identity value when no account exists yet (sign-up).

Claims:
- act: the strategy's sign-in action name
- identity: the identity-field value, stringified
- sub: the account's primary key (account-bound tokens only)
- tenant: the requesting tenant, when the context carries one

The issuer never delivers tokens; sending is the caller's explicit step.
"""

import logging
from typing import Any

from magiclink.core.magic_link_errors import IssuanceError
from magiclink.core.ports import TokenCodec
from magiclink.core.strategy import MAGIC_LINK_PURPOSE, MagicLinkStrategy

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Issue magic link tokens for one strategy.

    Args:
        strategy: Validated strategy configuration.
        codec: Token codec used for signing.
    """

    def __init__(self, strategy: MagicLinkStrategy, codec: TokenCodec) -> None:
        self.strategy = strategy
        self._codec = codec

    def issue_for_account(
        self, account: Any, context: dict[str, Any] | None = None
    ) -> str:
        """Issue a token bound to an existing account.

        Args:
            account: Instance of the strategy's resource.
            context: Request context (optional ``tenant``).

        Returns:
            Encoded token.

        Raises:
            IssuanceError: If account is not a resource instance, has no
                primary key yet, or signing fails.
        """
        if not self.strategy.is_resource(account):
            msg = (
                f"Expected a {self.strategy.resource.__name__}, "
                f"got {type(account).__name__}"
            )
            raise IssuanceError(msg)

        primary_key = self.strategy.primary_key_of(account)
        if primary_key is None:
            raise IssuanceError("Account has no primary key")

        claims = self._base_claims(self.strategy.identity_of(account), context)
        claims["sub"] = str(primary_key)
        return self._issue(claims)

    def issue_for_identity(
        self, identity_value: Any, context: dict[str, Any] | None = None
    ) -> str:
        """Issue a token bound to a bare identity value.

        No account lookup happens here; the account need not exist.

        Args:
            identity_value: Identity-field value (stringified into claims).
            context: Request context (optional ``tenant``).

        Returns:
            Encoded token.

        Raises:
            IssuanceError: If signing fails.
        """
        return self._issue(self._base_claims(identity_value, context))

    def _base_claims(
        self, identity_value: Any, context: dict[str, Any] | None
    ) -> dict[str, Any]:
        claims: dict[str, Any] = {
            "act": self.strategy.sign_in_action_name,
            "identity": str(identity_value),
        }
        tenant = (context or {}).get("tenant")
        if tenant is not None:
            claims["tenant"] = str(tenant)
        return claims

    def _issue(self, claims: dict[str, Any]) -> str:
        token = self._codec.issue(
            claims,
            purpose=MAGIC_LINK_PURPOSE,
            lifetime=self.strategy.token_lifetime,
        )
        logger.debug(
            "Issued magic link token",
            extra={
                "strategy": self.strategy.name,
                "account_bound": "sub" in claims,
            },
        )
        return token
