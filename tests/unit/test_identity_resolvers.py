"""Tests for identity resolvers.

Covers:
- InMemoryIdentityResolver: lookup under each comparison rule, registration,
  duplicate detection, confirmation
- SqlIdentityResolver: the same contract against PostgreSQL (skipped
  without it), canonical values per comparison rule, and transient
  error translation
"""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from magiclink.core.magic_link_errors import IdentityTakenError, InfrastructureError
from magiclink.core.strategy import IdentityComparison, MagicLinkStrategy
from magiclink.models.user import User
from magiclink.repositories.user_repository import UserRepository
from magiclink.services.identity_resolvers import (
    InMemoryIdentityResolver,
    SqlIdentityResolver,
)
from magiclink.services.magic_link_service import MagicLinkService
from tests.conftest import T0, TEST_EMAIL

_NEW_EMAIL = "newcomer@example.com"


# =============================================================================
# In-memory resolver
# =============================================================================


class TestInMemoryLookup:
    """find_by() keys users by the normalized identity value."""

    async def test_finds_existing_user(self, resolver, existing_user):
        assert await resolver.find_by("email", TEST_EMAIL) is existing_user

    async def test_missing_user_is_none(self, resolver):
        assert await resolver.find_by("email", _NEW_EMAIL) is None

    async def test_case_insensitive_by_default(self, resolver, existing_user):
        assert await resolver.find_by("email", TEST_EMAIL.upper()) is existing_user

    async def test_exact_is_case_sensitive(self, clock):
        resolver = InMemoryIdentityResolver(IdentityComparison.EXACT, clock=clock)
        resolver.add(User(email=TEST_EMAIL))

        assert await resolver.find_by("email", TEST_EMAIL.upper()) is None

    async def test_removed_user_not_found(self, resolver, existing_user):
        resolver.remove(existing_user)

        assert await resolver.find_by("email", TEST_EMAIL) is None


class TestInMemoryRegistration:
    """create() and add() enforce identity uniqueness."""

    async def test_create_stamps_user(self, resolver, clock):
        user = await resolver.create("email", _NEW_EMAIL, confirmed_at=clock.now)

        assert user.id is not None
        assert user.created_at == T0
        assert user.email_verified == T0
        assert resolver.users == [user]

    async def test_create_duplicate_raises(self, resolver, clock, existing_user):
        with pytest.raises(IdentityTakenError):
            await resolver.create("email", TEST_EMAIL.upper(), confirmed_at=clock.now)

    async def test_add_keeps_given_timestamps(self, resolver, clock):
        created = clock.now - timedelta(days=2)

        user = resolver.add(User(email=_NEW_EMAIL, created_at=created))

        assert user.created_at == created

    async def test_confirm_sets_timestamp(self, resolver, clock):
        user = resolver.add(User(email=_NEW_EMAIL))

        confirmed = await resolver.confirm(user, confirmed_at=clock.now)

        assert confirmed.email_verified == clock.now


# =============================================================================
# SQL resolver (requires PostgreSQL)
# =============================================================================


class TestSqlIdentityResolver:
    """Users table through UserRepository."""

    async def test_create_then_find(self, db_session):
        resolver = SqlIdentityResolver(db_session)

        created = await resolver.create("email", "Newcomer@Example.com", confirmed_at=T0)
        found = await resolver.find_by("email", _NEW_EMAIL.upper())

        assert found.id == created.id
        assert found.email == _NEW_EMAIL
        assert found.email_verified == T0

    async def test_missing_user_is_none(self, db_session):
        assert await SqlIdentityResolver(db_session).find_by("email", _NEW_EMAIL) is None

    async def test_duplicate_create_raises_identity_taken(self, db_session):
        resolver = SqlIdentityResolver(db_session)
        await resolver.create("email", _NEW_EMAIL, confirmed_at=T0)

        with pytest.raises(IdentityTakenError):
            await resolver.create("email", _NEW_EMAIL, confirmed_at=T0)

    async def test_session_usable_after_conflict(self, db_session):
        resolver = SqlIdentityResolver(db_session)
        await resolver.create("email", _NEW_EMAIL, confirmed_at=T0)
        with pytest.raises(IdentityTakenError):
            await resolver.create("email", _NEW_EMAIL, confirmed_at=T0)

        assert await resolver.find_by("email", _NEW_EMAIL) is not None

    async def test_confirm_persists(self, db_session):
        user = await UserRepository.create(db_session, email=_NEW_EMAIL)
        await db_session.commit()

        await SqlIdentityResolver(db_session).confirm(user, confirmed_at=T0)

        reloaded = await UserRepository.get_by_field(db_session, "email", _NEW_EMAIL)
        assert reloaded.email_verified == T0

    async def test_exact_rule_keeps_case(self, db_session):
        resolver = SqlIdentityResolver(db_session, IdentityComparison.EXACT)

        created = await resolver.create("email", "Foo@Example.com", confirmed_at=T0)

        assert created.email == "Foo@Example.com"
        assert await resolver.find_by("email", "foo@example.com") is None
        assert (await resolver.find_by("email", "Foo@Example.com")).id == created.id

    async def test_registration_under_exact_rule_signs_in(
        self, db_session, codec, store, sender, clock
    ):
        strategy = MagicLinkStrategy(
            resource=User,
            identity_comparison=IdentityComparison.EXACT,
            registration_enabled=True,
        )
        service = MagicLinkService(
            strategy,
            codec,
            SqlIdentityResolver(db_session, strategy.identity_comparison),
            store,
            sender,
            clock=clock,
        )

        pending = await service.request("Foo@Example.com")
        user = await service.sign_in(pending.token)

        assert user.email == "Foo@Example.com"


class TestSqlIdentityResolverFailures:
    """Transient database errors are infrastructure failures."""

    async def test_lookup_failure_becomes_infrastructure_error(self):
        db = AsyncMock()
        db.execute.side_effect = OperationalError(
            "SELECT", {}, Exception("connection lost")
        )

        with pytest.raises(InfrastructureError):
            await SqlIdentityResolver(db).find_by("email", TEST_EMAIL)

    async def test_rejects_unknown_registration_field(self):
        with pytest.raises(ValueError, match="Cannot register users by"):
            await SqlIdentityResolver(AsyncMock()).create("name", "x", confirmed_at=T0)


class TestSqlIdentityResolverComparison:
    """Lookups and registrations use the comparison rule's canonical form."""

    @pytest.mark.parametrize(
        ("comparison", "expected"),
        [
            (IdentityComparison.EXACT, " Foo@Example.com "),
            (IdentityComparison.CASE_INSENSITIVE, " foo@example.com "),
            (IdentityComparison.NORMALIZED, "foo@example.com"),
        ],
    )
    async def test_lookup_value(self, comparison, expected):
        with patch.object(
            UserRepository, "get_by_field", AsyncMock(return_value=None)
        ) as get_by_field:
            await SqlIdentityResolver(AsyncMock(), comparison).find_by(
                "email", " Foo@Example.com "
            )

        assert get_by_field.await_args.args[1:] == ("email", expected)

    @pytest.mark.parametrize(
        ("comparison", "expected"),
        [
            (IdentityComparison.EXACT, "Foo@Example.com"),
            (IdentityComparison.CASE_INSENSITIVE, "foo@example.com"),
        ],
    )
    async def test_registered_value(self, comparison, expected):
        db = MagicMock()
        db.commit = AsyncMock()
        user = User(id=uuid.uuid4(), email=expected)

        with patch.object(
            UserRepository, "create", AsyncMock(return_value=user)
        ) as create:
            await SqlIdentityResolver(db, comparison).create(
                "email", "Foo@Example.com", confirmed_at=T0
            )

        assert create.await_args.kwargs["email"] == expected
