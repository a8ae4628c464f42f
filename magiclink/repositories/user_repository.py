"""Repository for User CRUD operations.

Provides database access for the users table: lookup by identity field,
creation during magic link registration, and email confirmation.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from magiclink.models.user import User

# Fields that may be used as a lookup key via get_by_field().
# Security: only uniquely constrained identity columns belong here.
_LOOKUP_FIELDS: frozenset[str] = frozenset({"email"})


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_field(db: AsyncSession, field: str, value: str) -> User | None:
        """Fetch a user by a uniquely constrained identity field.

        Args:
            db: Async database session.
            field: Identity field name (must be in _LOOKUP_FIELDS).
            value: Value to match, already in canonical form.

        Returns:
            User if found, None otherwise.

        Raises:
            ValueError: If field is not an allowed lookup field.
        """
        if field not in _LOOKUP_FIELDS:
            msg = f"Unknown lookup field: {field}"
            raise ValueError(msg)
        stmt = select(User).where(getattr(User, field) == value)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        name: str | None = None,
        email_verified: datetime | None = None,
    ) -> User:
        """Create a new user.

        Args:
            db: Async database session.
            email: User email address, already in canonical form.
            name: Display name.
            email_verified: Timestamp when email was verified.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email already exists.
        """
        user = User(
            email=email,
            name=name,
            email_verified=email_verified,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def mark_email_verified(
        db: AsyncSession, user: User, *, verified_at: datetime
    ) -> User:
        """Record that the user has proven ownership of their email.

        Args:
            db: Async database session.
            user: User to update.
            verified_at: When ownership was proven.

        Returns:
            The updated User.
        """
        user.email_verified = verified_at
        await db.flush()
        await db.refresh(user)
        return user
