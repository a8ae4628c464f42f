import socket
import uuid
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from magiclink.core.config import settings
from magiclink.core.email import LoggingLinkSender
from magiclink.core.strategy import MagicLinkStrategy
from magiclink.core.token_codec import JwtTokenCodec
from magiclink.models.base import Base
from magiclink.models.user import User
from magiclink.services.identity_resolvers import InMemoryIdentityResolver
from magiclink.services.magic_link_service import MagicLinkService
from magiclink.services.redemption import RedemptionEngine
from magiclink.services.redemption_store import InMemoryRedemptionStore
from magiclink.services.token_issuer import TokenIssuer

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Test user ID (consistent across tests for predictable assertions)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_EMAIL = "magicuser@example.com"

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

# Fixed starting point for the fake clock
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Controllable clock shared by the codec and the redemption engine."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def make_codec(clock: FakeClock, secret: str = TEST_AUTH_SECRET) -> JwtTokenCodec:
    """Build a codec bound to the fake clock."""
    return JwtTokenCodec(
        secret=secret,
        issuer="magiclink-test",
        audience="magiclink-test",
        clock=clock,
    )


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# Magic link fixtures (in-memory collaborators)
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at T0."""
    return FakeClock()


@pytest.fixture
def codec(clock: FakeClock) -> JwtTokenCodec:
    """JWT codec on the fake clock."""
    return make_codec(clock)


@pytest.fixture
def strategy() -> MagicLinkStrategy:
    """Default strategy: single-use, hijack prevention on, registration off."""
    return MagicLinkStrategy(resource=User)


@pytest.fixture
def resolver(clock: FakeClock) -> InMemoryIdentityResolver:
    """Empty in-memory user store on the fake clock."""
    return InMemoryIdentityResolver(clock=clock)


@pytest.fixture
def store() -> InMemoryRedemptionStore:
    """Empty in-memory marker store."""
    return InMemoryRedemptionStore()


@pytest.fixture
def sender() -> LoggingLinkSender:
    """Sender that records deliveries."""
    return LoggingLinkSender()


@pytest.fixture
def existing_user(resolver: InMemoryIdentityResolver, clock: FakeClock) -> User:
    """A verified user created before any token is issued."""
    user = User(
        id=TEST_USER_ID,
        email=TEST_EMAIL,
        email_verified=clock.now - timedelta(days=30),
        created_at=clock.now - timedelta(days=30),
    )
    return resolver.add(user)


@pytest.fixture
def issuer(strategy: MagicLinkStrategy, codec: JwtTokenCodec) -> TokenIssuer:
    """Issuer for the default strategy."""
    return TokenIssuer(strategy, codec)


@pytest.fixture
def engine(
    strategy: MagicLinkStrategy,
    codec: JwtTokenCodec,
    resolver: InMemoryIdentityResolver,
    store: InMemoryRedemptionStore,
    clock: FakeClock,
) -> RedemptionEngine:
    """Redemption engine for the default strategy."""
    return RedemptionEngine(strategy, codec, resolver, store, clock=clock)


@pytest.fixture
def service(
    strategy: MagicLinkStrategy,
    codec: JwtTokenCodec,
    resolver: InMemoryIdentityResolver,
    store: InMemoryRedemptionStore,
    sender: LoggingLinkSender,
    clock: FakeClock,
) -> MagicLinkService:
    """Magic link service on in-memory collaborators."""
    return MagicLinkService(
        strategy=strategy,
        codec=codec,
        resolver=resolver,
        store=store,
        sender=sender,
        clock=clock,
    )


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def disable_rate_limiting() -> Iterator[None]:
    """Disable rate limiting during tests.

    Security: Rate limiting is tested separately; disable for other tests
    to avoid flaky failures from rate limit triggers.

    Yields:
        None (autouse fixture).
    """
    from magiclink.core.rate_limiting import limiter

    original_enabled = limiter.enabled
    limiter.enabled = False

    yield

    limiter.enabled = original_enabled
