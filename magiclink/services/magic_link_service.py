"""Magic link request and sign-in orchestration.

Request flow:
1. Existing account → token bound to the account, sent to the account
2. No account, registration enabled → token bound to the identity value,
   sent to the identity (sign-up)
3. No account, registration disabled → nothing is issued or sent

Callers cannot tell the three cases apart (enumeration defense).

Sign-in flow delegates to the redemption engine.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from magiclink.core.magic_link_errors import LinkDeliveryError
from magiclink.core.ports import (
    IdentityResolver,
    LinkSender,
    RedemptionStore,
    TokenCodec,
)
from magiclink.core.strategy import MagicLinkStrategy
from magiclink.services.redemption import RedemptionEngine
from magiclink.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class PendingDelivery:
    """An issued token waiting to be sent.

    Attributes:
        destination: Account or identity value to deliver to.
        token: Encoded magic link token.
        context: Request context for the sender.
    """

    destination: Any
    token: str
    context: dict[str, Any] = field(default_factory=dict)


class MagicLinkService:
    """Request and redeem magic links for one strategy.

    Args:
        strategy: Validated strategy configuration.
        codec: Token codec.
        resolver: Account lookup and registration.
        store: Single-use marker store.
        sender: Link delivery.
        clock: Returns the current time; stamps registrations.
    """

    def __init__(
        self,
        strategy: MagicLinkStrategy,
        codec: TokenCodec,
        resolver: IdentityResolver,
        store: RedemptionStore,
        sender: LinkSender,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.strategy = strategy
        self.issuer = TokenIssuer(strategy, codec)
        self.engine = RedemptionEngine(strategy, codec, resolver, store, clock=clock)
        self._resolver = resolver
        self._sender = sender

    async def request(
        self, identity_value: Any, context: dict[str, Any] | None = None
    ) -> PendingDelivery | None:
        """Issue a token for an identity without sending it.

        Args:
            identity_value: Identity-field value the user typed.
            context: Request context (optional ``tenant``).

        Returns:
            PendingDelivery, or None when no link should be sent.

        Raises:
            IssuanceError: If signing fails.
            InfrastructureError: If account lookup is unavailable.
        """
        context = context or {}
        account = await self._resolver.find_by(
            self.strategy.identity_field, identity_value
        )
        if account is not None:
            token = self.issuer.issue_for_account(account, context)
            return PendingDelivery(destination=account, token=token, context=context)

        if self.strategy.registration_enabled:
            token = self.issuer.issue_for_identity(identity_value, context)
            return PendingDelivery(
                destination=identity_value, token=token, context=context
            )

        logger.info(
            "Magic link requested for unknown identity",
            extra={"strategy": self.strategy.name},
        )
        return None

    async def deliver(self, pending: PendingDelivery) -> bool:
        """Send an issued token. Failures are logged, never raised.

        Returns:
            True if the sender accepted the link.
        """
        try:
            await self._sender.send(pending.destination, pending.token, pending.context)
        except LinkDeliveryError:
            logger.warning(
                "Failed to deliver magic link",
                extra={"strategy": self.strategy.name},
                exc_info=True,
            )
            return False
        return True

    async def request_and_send(
        self, identity_value: Any, context: dict[str, Any] | None = None
    ) -> None:
        """Issue and deliver a link in one step (non-HTTP callers)."""
        pending = await self.request(identity_value, context)
        if pending is not None:
            await self.deliver(pending)

    async def sign_in(self, token: str, context: dict[str, Any] | None = None) -> Any:
        """Redeem a token. See RedemptionEngine.redeem."""
        return await self.engine.redeem(token, context)
