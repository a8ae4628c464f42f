"""Redeemed token model - single-use markers for magic link tokens.

One row per redeemed token id. The primary key is the atomic
check-and-mark: a second insert for the same token_id never succeeds.
"""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from magiclink.models.base import Base


class RedeemedToken(Base):
    """Marker recording that a single-use token has been redeemed.

    Attributes:
        token_id: The token's unique id (JWT jti claim).
        redeemed_at: When the token was redeemed.
        expires_at: Token expiry, kept so stale markers can be purged.
    """

    __tablename__ = "redeemed_tokens"
    __table_args__ = (Index("idx_redeemed_tokens_expires_at", "expires_at"),)

    token_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
