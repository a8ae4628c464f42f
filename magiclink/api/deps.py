"""Shared dependencies for API endpoints.

Builds the magic link strategy and its collaborators from settings and
wires them into a MagicLinkService per request.

WHY DEPENDENCY INJECTION:
- Strategy validation happens once, when create_app() builds the app
- Tests swap the service for one built on in-memory adapters
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from magiclink.core.config import settings
from magiclink.core.database import get_db, marker_session_factory
from magiclink.core.email import EmailLinkSender
from magiclink.core.strategy import MagicLinkStrategy
from magiclink.core.token_codec import JwtTokenCodec
from magiclink.models.user import User
from magiclink.services.identity_resolvers import SqlIdentityResolver
from magiclink.services.magic_link_service import MagicLinkService
from magiclink.services.redemption_store import SqlRedemptionStore

DbSession = Annotated[AsyncSession, Depends(get_db)]

_strategy: MagicLinkStrategy | None = None


def get_strategy() -> MagicLinkStrategy:
    """Get the singleton strategy, validating it on first call.

    Raises:
        StrategyConfigurationError: If settings describe an invalid policy.
    """
    global _strategy
    if _strategy is None:
        _strategy = MagicLinkStrategy.from_settings(User, settings)
    return _strategy


def reset_strategy() -> None:
    """Reset the strategy singleton (for testing)."""
    global _strategy
    _strategy = None


def get_magic_link_service(db: DbSession) -> MagicLinkService:
    """Build the magic link service for one request.

    Args:
        db: Request database session (account lookup and registration).

    Returns:
        MagicLinkService backed by PostgreSQL and Resend.
    """
    strategy = get_strategy()
    return MagicLinkService(
        strategy=strategy,
        codec=JwtTokenCodec.from_settings(settings),
        resolver=SqlIdentityResolver(db, strategy.identity_comparison),
        store=SqlRedemptionStore(marker_session_factory),
        sender=EmailLinkSender(strategy, settings),
    )


MagicLinks = Annotated[MagicLinkService, Depends(get_magic_link_service)]
