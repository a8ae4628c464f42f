"""Magic link delivery.

EmailLinkSender posts plain-text sign-in emails to the Resend API.
LoggingLinkSender records deliveries in memory and logs them, for
local-first mode and tests.

The destination is either an existing account (the email is read from its
identity field) or a bare identity value during sign-up.
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from magiclink.core.config import Settings
from magiclink.core.magic_link_errors import LinkDeliveryError
from magiclink.core.strategy import MagicLinkStrategy

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

SIGN_IN_PATH = "/api/v1/auth/magic-link"


def build_magic_link_url(
    base_url: str,
    strategy: MagicLinkStrategy,
    token: str,
    context: dict[str, Any] | None = None,
) -> str:
    """Build the URL a user clicks to redeem a token.

    A tenant-scoped token only redeems in the same tenant, so the request
    context's tenant travels in the link alongside the token.

    Args:
        base_url: Backend origin (the link hits the API directly).
        strategy: Strategy whose token_param_name carries the token.
        token: Encoded magic link token.
        context: Request context the token was issued under.

    Returns:
        Absolute sign-in URL.
    """
    query = {strategy.token_param_name: token}
    tenant = (context or {}).get("tenant")
    if tenant:
        query["tenant"] = str(tenant)
    params = urlencode(query, quote_via=quote)
    return f"{base_url.rstrip('/')}{SIGN_IN_PATH}?{params}"


def destination_address(strategy: MagicLinkStrategy, destination: Any) -> str:
    """Resolve the delivery address for an account or a bare identity."""
    if strategy.is_resource(destination):
        return str(strategy.identity_of(destination))
    return str(destination)


class EmailLinkSender:
    """LinkSender that emails sign-in links via Resend.

    Args:
        strategy: Strategy the links redeem against.
        settings: Application settings (API key, sender, backend URL).
    """

    def __init__(self, strategy: MagicLinkStrategy, settings: Settings) -> None:
        self._strategy = strategy
        self._settings = settings

    async def send(
        self, destination: Any, token: str, context: dict[str, Any]
    ) -> None:
        """Send a magic link sign-in email.

        Args:
            destination: Account or identity value to deliver to.
            token: Encoded magic link token.
            context: Request context. Its tenant is carried in the link.

        Raises:
            LinkDeliveryError: If the Resend API call fails.
        """
        to_email = destination_address(self._strategy, destination)
        verify_url = build_magic_link_url(
            self._settings.backend_url, self._strategy, token, context
        )
        minutes = int(self._strategy.token_lifetime.total_seconds() // 60)

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    _RESEND_API_URL,
                    headers={
                        "Authorization": (
                            f"Bearer {self._settings.resend_api_key.get_secret_value()}"
                        ),
                    },
                    json={
                        "from": self._settings.email_from,
                        "to": to_email,
                        "subject": "Your sign-in link",
                        "text": (
                            f"Click this link to sign in:\n\n{verify_url}\n\n"
                            f"This link expires in {minutes} minutes. "
                            "If you didn't request this, you can safely ignore this email."
                        ),
                    },
                    timeout=_RESEND_TIMEOUT,
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise LinkDeliveryError("Failed to send magic link email") from exc


@dataclass
class SentLink:
    """A recorded delivery.

    Attributes:
        destination: Account or identity value the link was sent to.
        token: Encoded magic link token.
        context: Request context passed to the sender.
    """

    destination: Any
    token: str
    context: dict[str, Any]


class LoggingLinkSender:
    """LinkSender that records deliveries instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[SentLink] = []

    async def send(
        self, destination: Any, token: str, context: dict[str, Any]
    ) -> None:
        """Record the delivery and log that it happened (never the token)."""
        self.sent.append(SentLink(destination=destination, token=token, context=context))
        logger.info(
            "Magic link recorded",
            extra={"account_bound": not isinstance(destination, str)},
        )
