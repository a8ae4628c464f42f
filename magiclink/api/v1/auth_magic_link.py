"""Magic link endpoints.

Passwordless sign-in via email magic links.

Endpoints:
- POST /auth/magic-link: request a magic link email
- GET /auth/magic-link: redeem the token, issue session JWT, redirect
"""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr

from magiclink.api.deps import MagicLinks
from magiclink.core.auth import create_jwt, set_auth_cookie
from magiclink.core.config import settings
from magiclink.core.errors import ServiceUnavailableError, ValidationError
from magiclink.core.magic_link_errors import InfrastructureError, MagicLinkRejectedError
from magiclink.core.rate_limiting import limiter
from magiclink.core.responses import DataResponse

logger = logging.getLogger(__name__)

router = APIRouter()

_INVALID_MAGIC_LINK_MSG = "Invalid or expired magic link"
_REQUEST_ACCEPTED_MSG = "If you can sign in with this address, a link has been sent"
_MAX_TOKEN_LENGTH = 2048


# ===================================================================
# Request models
# ===================================================================


class MagicLinkRequest(BaseModel):
    """Request body for POST /auth/magic-link."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


def _request_context(tenant: str | None) -> dict:
    return {"tenant": tenant} if tenant else {}


# ===================================================================
# POST /auth/magic-link
# ===================================================================


@router.post("/magic-link")
@limiter.limit("5/hour")
async def request_magic_link(
    request: Request,  # noqa: ARG001
    body: MagicLinkRequest,
    background_tasks: BackgroundTasks,
    service: MagicLinks,
    tenant: Annotated[str | None, Query(max_length=64)] = None,
) -> DataResponse[dict]:
    """Request a magic link sign-in email.

    Always returns the same success response whether or not a link was
    issued (prevents email enumeration). The email is sent as a background
    task so response time does not depend on account existence.

    Rate limit: 5 per hour per IP.
    """
    email = body.email.strip()

    try:
        pending = await service.request(email, _request_context(tenant))
    except InfrastructureError as exc:
        raise ServiceUnavailableError() from exc

    if pending is not None:
        background_tasks.add_task(service.deliver, pending)

    return DataResponse(data={"message": _REQUEST_ACCEPTED_MSG})


# ===================================================================
# GET /auth/magic-link
# ===================================================================


@router.get("/magic-link")
@limiter.limit("10/minute")
async def sign_in_with_magic_link(
    request: Request,
    service: MagicLinks,
    tenant: Annotated[str | None, Query(max_length=64)] = None,
) -> RedirectResponse:
    """Redeem a magic link token and issue a JWT session.

    Every rejection renders the same message; the specific reason is only
    logged. Infrastructure failures return 503 so the client may retry.

    Rate limit: 10 per minute per IP.
    """
    token = request.query_params.get(service.strategy.token_param_name, "")
    if not token or len(token) > _MAX_TOKEN_LENGTH:
        raise ValidationError(_INVALID_MAGIC_LINK_MSG)

    try:
        user = await service.sign_in(token, _request_context(tenant))
    except MagicLinkRejectedError as exc:
        logger.info("Magic link sign-in refused", extra={"reason": exc.reason.value})
        raise ValidationError(_INVALID_MAGIC_LINK_MSG) from exc
    except InfrastructureError as exc:
        logger.warning("Magic link sign-in unavailable", exc_info=True)
        raise ServiceUnavailableError() from exc

    jwt_token = create_jwt(
        user_id=str(user.id),
        secret=settings.auth_secret.get_secret_value(),
    )

    response = RedirectResponse(url=settings.frontend_url, status_code=307)
    set_auth_cookie(response, jwt_token)
    # Prevent token leakage via Referer header
    response.headers["Referrer-Policy"] = "no-referrer"
    return response
