"""Repository for RedeemedToken operations.

Single-use markers for magic link tokens, keyed by token id. The insert
is the check-and-mark: PostgreSQL's ON CONFLICT DO NOTHING guarantees at
most one caller ever sees a row returned for a given token id.
"""

from datetime import UTC, datetime

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from magiclink.models.redeemed_token import RedeemedToken


class RedeemedTokenRepository:
    """Stateless repository for RedeemedToken table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def mark_redeemed(
        db: AsyncSession,
        *,
        token_id: str,
        expires_at: datetime,
    ) -> bool:
        """Insert a marker unless one already exists.

        Args:
            db: Async database session.
            token_id: Unique token id (jti).
            expires_at: Token expiry, used for purging.

        Returns:
            True if this call inserted the marker, False if it existed.
        """
        stmt = (
            insert(RedeemedToken)
            .values(token_id=token_id, expires_at=expires_at)
            .on_conflict_do_nothing(index_elements=[RedeemedToken.token_id])
            .returning(RedeemedToken.token_id)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def delete_expired(db: AsyncSession) -> int:
        """Delete markers for tokens that can no longer verify.

        Args:
            db: Async database session.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(RedeemedToken).where(
            RedeemedToken.expires_at < datetime.now(UTC),
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
