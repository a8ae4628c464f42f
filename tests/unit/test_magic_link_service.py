"""Tests for MagicLinkService.

Covers:
- request(): account-bound, identity-bound, and silent outcomes
- deliver(): sender failures are logged, not raised
- request_and_send() and sign_in() end to end
"""

from typing import Any

import pytest

from magiclink.core.magic_link_errors import (
    IdentityNotFoundError,
    InfrastructureError,
    LinkDeliveryError,
    TokenAlreadyUsedError,
)
from magiclink.core.strategy import MAGIC_LINK_PURPOSE, MagicLinkStrategy
from magiclink.models.user import User
from magiclink.services.identity_resolvers import InMemoryIdentityResolver
from magiclink.services.magic_link_service import MagicLinkService, PendingDelivery
from tests.conftest import TEST_EMAIL, TEST_USER_ID

_NEW_EMAIL = "newcomer@example.com"


class _FailingSender:
    """LinkSender whose provider rejects every message."""

    def __init__(self) -> None:
        self.attempts = 0

    async def send(self, destination: Any, token: str, context: dict[str, Any]) -> None:
        self.attempts += 1
        raise LinkDeliveryError("Failed to send magic link email")


@pytest.fixture
def registering_service(codec, resolver, store, sender, clock) -> MagicLinkService:
    """Service whose strategy allows sign-up."""
    return MagicLinkService(
        strategy=MagicLinkStrategy(resource=User, registration_enabled=True),
        codec=codec,
        resolver=resolver,
        store=store,
        sender=sender,
        clock=clock,
    )


class TestRequest:
    """request() decides what, if anything, to send."""

    async def test_existing_account_gets_account_bound_token(
        self, service, codec, existing_user
    ):
        pending = await service.request(TEST_EMAIL)

        assert pending.destination is existing_user
        claims = codec.verify(pending.token, MAGIC_LINK_PURPOSE).claims
        assert claims["sub"] == str(TEST_USER_ID)

    async def test_lookup_uses_comparison_rule(self, service, existing_user):
        pending = await service.request(TEST_EMAIL.upper())

        assert pending.destination is existing_user

    async def test_unknown_identity_without_registration_sends_nothing(
        self, service, sender
    ):
        pending = await service.request(_NEW_EMAIL)

        assert pending is None
        assert sender.sent == []

    async def test_unknown_identity_with_registration_gets_identity_token(
        self, registering_service, codec, resolver
    ):
        pending = await registering_service.request(_NEW_EMAIL)

        assert pending.destination == _NEW_EMAIL
        claims = codec.verify(pending.token, MAGIC_LINK_PURPOSE).claims
        assert claims["identity"] == _NEW_EMAIL
        assert "sub" not in claims
        assert resolver.users == []

    async def test_context_carried_to_delivery(self, service, codec, existing_user):
        pending = await service.request(TEST_EMAIL, {"tenant": "acme"})

        assert pending.context == {"tenant": "acme"}
        assert codec.verify(pending.token, MAGIC_LINK_PURPOSE).claims["tenant"] == "acme"

    async def test_request_does_not_send(self, service, sender, existing_user):
        await service.request(TEST_EMAIL)

        assert sender.sent == []

    async def test_lookup_failure_propagates(
        self, strategy, codec, store, sender, clock
    ):
        class _Down(InMemoryIdentityResolver):
            async def find_by(self, field, value):
                raise InfrastructureError("Account lookup unavailable")

        service = MagicLinkService(strategy, codec, _Down(), store, sender, clock=clock)

        with pytest.raises(InfrastructureError):
            await service.request(TEST_EMAIL)


class TestDeliver:
    """deliver() hands the token to the sender."""

    async def test_records_delivery(self, service, sender, existing_user):
        pending = await service.request(TEST_EMAIL)

        assert await service.deliver(pending) is True
        assert sender.sent[0].destination is existing_user
        assert sender.sent[0].token == pending.token

    async def test_sender_failure_is_swallowed_and_logged(
        self, strategy, codec, resolver, store, clock, caplog
    ):
        sender = _FailingSender()
        service = MagicLinkService(strategy, codec, resolver, store, sender, clock=clock)
        pending = PendingDelivery(destination=_NEW_EMAIL, token="tok")

        assert await service.deliver(pending) is False
        assert sender.attempts == 1
        assert "Failed to deliver magic link" in caplog.text


class TestEndToEnd:
    """request_and_send() followed by sign_in()."""

    async def test_sent_link_signs_in(self, service, sender, existing_user):
        await service.request_and_send(TEST_EMAIL)

        account = await service.sign_in(sender.sent[0].token)

        assert account is existing_user

    async def test_sent_link_is_single_use(self, service, sender, existing_user):
        await service.request_and_send(TEST_EMAIL)
        token = sender.sent[0].token
        await service.sign_in(token)

        with pytest.raises(TokenAlreadyUsedError):
            await service.sign_in(token)

    async def test_unknown_identity_sends_nothing(self, service, sender):
        await service.request_and_send(_NEW_EMAIL)

        assert sender.sent == []

    async def test_sign_up_creates_confirmed_account(
        self, registering_service, sender, resolver, clock
    ):
        await registering_service.request_and_send(_NEW_EMAIL)

        account = await registering_service.sign_in(sender.sent[0].token)

        assert resolver.users == [account]
        assert account.email_verified == clock.now

    async def test_sign_up_link_refused_after_registration_disabled(
        self, registering_service, service, sender
    ):
        await registering_service.request_and_send(_NEW_EMAIL)

        with pytest.raises(IdentityNotFoundError):
            await service.sign_in(sender.sent[0].token)
