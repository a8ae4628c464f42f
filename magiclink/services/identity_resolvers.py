"""Identity resolvers for the magic link strategy.

Two implementations of the IdentityResolver port:

- SqlIdentityResolver: looks up and registers users through UserRepository
  on the caller's session.
- InMemoryIdentityResolver: holds User instances in a dict keyed by the
  normalized identity value, for local-first mode and tests.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from magiclink.core.magic_link_errors import IdentityTakenError, InfrastructureError
from magiclink.core.strategy import IdentityComparison
from magiclink.models.user import User
from magiclink.repositories.user_repository import UserRepository
from magiclink.services.redemption_store import TRANSIENT_DB_ERRORS

logger = logging.getLogger(__name__)


class SqlIdentityResolver:
    """IdentityResolver backed by the users table.

    Identity values are stored and looked up in the canonical form of the
    strategy's comparison rule, so the database's exact-match unique index
    agrees with the rule the redemption engine compares under.

    Args:
        db: The request's async session. Registrations are committed
            immediately so an authenticated account is always durable.
        comparison: Equality rule for identity values.
    """

    def __init__(
        self,
        db: AsyncSession,
        comparison: IdentityComparison = IdentityComparison.CASE_INSENSITIVE,
    ) -> None:
        self._db = db
        self._comparison = comparison

    async def find_by(self, field: str, value: Any) -> User | None:
        """Return the user whose field equals value, or None.

        Raises:
            InfrastructureError: On transient database failure.
        """
        try:
            return await UserRepository.get_by_field(
                self._db, field, self._comparison.normalize(value)
            )
        except TRANSIENT_DB_ERRORS as exc:
            raise InfrastructureError("Account lookup unavailable") from exc

    async def create(self, field: str, value: Any, *, confirmed_at: datetime) -> User:
        """Register a user with a confirmed identity.

        Raises:
            ValueError: If field is not the email column.
            IdentityTakenError: If another user already holds the value.
            InfrastructureError: On transient database failure.
        """
        if field != "email":
            msg = f"Cannot register users by {field}"
            raise ValueError(msg)
        try:
            # Savepoint: a unique violation must not poison the outer transaction
            async with self._db.begin_nested():
                user = await UserRepository.create(
                    self._db,
                    email=self._comparison.normalize(value),
                    email_verified=confirmed_at,
                )
            await self._db.commit()
        except IntegrityError as exc:
            raise IdentityTakenError("Identity already registered") from exc
        except TRANSIENT_DB_ERRORS as exc:
            raise InfrastructureError("Account registration unavailable") from exc

        logger.info("Registered user via magic link", extra={"user_id": str(user.id)})
        return user

    async def confirm(self, account: User, *, confirmed_at: datetime) -> User:
        """Mark the user's email as verified.

        Raises:
            InfrastructureError: On transient database failure.
        """
        try:
            user = await UserRepository.mark_email_verified(
                self._db, account, verified_at=confirmed_at
            )
            await self._db.commit()
        except TRANSIENT_DB_ERRORS as exc:
            raise InfrastructureError("Account update unavailable") from exc
        return user


class InMemoryIdentityResolver:
    """Process-local IdentityResolver over User instances.

    Lookups normalize values with the given comparison rule, mirroring a
    database column with that collation.

    Args:
        comparison: Equality rule used to key stored users.
        clock: Returns the current time; stamps created_at.
    """

    def __init__(
        self,
        comparison: IdentityComparison = IdentityComparison.CASE_INSENSITIVE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._comparison = comparison
        self._clock = clock or (lambda: datetime.now(UTC))
        self._users: dict[tuple[str, str], User] = {}

    def _key(self, field: str, value: Any) -> tuple[str, str]:
        return field, self._comparison.normalize(value)

    def add(self, user: User, field: str = "email") -> User:
        """Store an existing user, filling id and created_at when unset.

        Raises:
            IdentityTakenError: If another user already holds the value.
        """
        key = self._key(field, getattr(user, field))
        if key in self._users:
            raise IdentityTakenError("Identity already registered")
        if user.id is None:
            user.id = uuid.uuid4()
        if user.created_at is None:
            user.created_at = self._clock()
        self._users[key] = user
        return user

    def remove(self, user: User, field: str = "email") -> None:
        """Delete a stored user."""
        self._users.pop(self._key(field, getattr(user, field)), None)

    @property
    def users(self) -> list[User]:
        """All stored users."""
        return list(self._users.values())

    async def find_by(self, field: str, value: Any) -> User | None:
        """Return the user whose field equals value, or None."""
        return self._users.get(self._key(field, value))

    async def create(self, field: str, value: Any, *, confirmed_at: datetime) -> User:
        """Register a user with a confirmed identity.

        Raises:
            IdentityTakenError: If another user already holds the value.
        """
        user = User(**{field: str(value)})
        user.email_verified = confirmed_at
        return self.add(user, field)

    async def confirm(self, account: User, *, confirmed_at: datetime) -> User:
        """Mark the user's email as verified."""
        account.email_verified = confirmed_at
        return account
