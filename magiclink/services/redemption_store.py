"""Single-use marker stores for magic link tokens.

Two implementations of the RedemptionStore port:

- SqlRedemptionStore: PostgreSQL-backed, safe across processes. Each mark
  runs and commits in its own session so a later failure in the caller's
  transaction can never roll a marker back.
- InMemoryRedemptionStore: process-local, for local-first mode and tests.

WHY COMMIT IMMEDIATELY:
- Once a marker is set the redemption is committed; unmarking would reopen
  a replay window
- The request session may still roll back (e.g. failed registration)
"""

import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from magiclink.core.magic_link_errors import InfrastructureError
from magiclink.repositories.redeemed_token_repository import RedeemedTokenRepository

logger = logging.getLogger(__name__)

# Storage failures that say nothing about the token and may be retried
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


class SqlRedemptionStore:
    """RedemptionStore backed by the redeemed_tokens table.

    Args:
        session_factory: Factory for short-lived sessions, one per mark.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def mark_redeemed(self, token_id: str, expires_at: datetime) -> bool:
        """Atomically mark a token as redeemed.

        Returns:
            True if this call set the marker, False if it was already set.

        Raises:
            InfrastructureError: On transient database failure.
        """
        try:
            async with self._session_factory() as session:
                inserted = await RedeemedTokenRepository.mark_redeemed(
                    session, token_id=token_id, expires_at=expires_at
                )
                await session.commit()
        except TRANSIENT_DB_ERRORS as exc:
            logger.warning(
                "Redemption marker store unavailable",
                extra={"token_id": token_id},
            )
            raise InfrastructureError("Redemption marker store unavailable") from exc
        return inserted

    async def purge_expired(self) -> int:
        """Delete markers for tokens past expiry.

        Returns:
            Number of markers removed.

        Raises:
            InfrastructureError: On transient database failure.
        """
        try:
            async with self._session_factory() as session:
                removed = await RedeemedTokenRepository.delete_expired(session)
                await session.commit()
        except TRANSIENT_DB_ERRORS as exc:
            raise InfrastructureError("Redemption marker store unavailable") from exc
        logger.info("Purged expired redemption markers", extra={"count": removed})
        return removed


class InMemoryRedemptionStore:
    """Process-local RedemptionStore.

    Note: Safe for concurrent coroutines on one event loop. Not shared
    between processes; use SqlRedemptionStore for multi-instance deployments.
    """

    def __init__(self) -> None:
        self._markers: dict[str, tuple[datetime, datetime]] = {}
        self._lock = asyncio.Lock()

    async def mark_redeemed(self, token_id: str, expires_at: datetime) -> bool:
        """Atomically mark a token as redeemed.

        Returns:
            True if this call set the marker, False if it was already set.
        """
        async with self._lock:
            if token_id in self._markers:
                return False
            self._markers[token_id] = (datetime.now(UTC), expires_at)
            return True

    def is_redeemed(self, token_id: str) -> bool:
        """Check whether a marker exists for a token id."""
        return token_id in self._markers

    def purge_expired(self) -> int:
        """Remove markers for tokens past expiry.

        Returns:
            Number of markers removed.
        """
        now = datetime.now(UTC)
        expired = [
            token_id
            for token_id, (_, expires_at) in self._markers.items()
            if now > expires_at
        ]
        for token_id in expired:
            del self._markers[token_id]
        return len(expired)

    def clear(self) -> None:
        """Clear all markers (for testing)."""
        self._markers.clear()
