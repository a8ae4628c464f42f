"""User model - the account resource protected by the magic link strategy.

email is the identity field: unique, stored lowercase by the repository.
email_verified records proven ownership of the address and doubles as the
confirmation marker consulted by hijacking prevention.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from magiclink.models.base import Base, TimestampMixin

_DEFAULT_UUID = text("gen_random_uuid()")


class User(Base, TimestampMixin):
    """User account for authentication.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        name: Display name.
        email_verified: Timestamp when email was verified. NULL = unverified.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=_DEFAULT_UUID,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    email_verified: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
