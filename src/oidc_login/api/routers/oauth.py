"""OAuth login endpoints.

Login flow (public):
- GET /oauth/start        : redirect to the provider (``test=1`` for admins)
- GET /oauth/callback     : provider redirect target
- GET /oauth/login-error  : one-time error message for the login page
- GET /oauth/logout       : end the session (single logout when configured)
- GET /oauth/status       : current authentication status

Admin:
- GET  /oauth/test-claims      : claims of the last test login (read once)
- GET  /oauth/available-claims : cached claims for mapping suggestions
- POST /oauth/discover         : fetch a provider discovery document

The same start and callback handling is reachable through query flags on
``/`` (see api.main); both paths go through ``start_response`` and
``callback_response``.

Routes that only touch the state store or user repository are plain ``def``
so FastAPI runs their file I/O in its threadpool.
"""

from typing import Any

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import RedirectResponse
from loguru import logger
from pydantic import BaseModel, Field

from oidc_login.api.dependencies import (
    AdminContext,
    Browser,
    BrowserSession,
    Container,
    Context,
)
from oidc_login.auth.claims import decode_metadata
from oidc_login.auth.client import DiscoveryDocument
from oidc_login.auth.context import RequestContext
from oidc_login.auth.errors import ConfigurationError, DiscoveryError, PermissionDeniedError
from oidc_login.auth.factory import AuthContainer

router = APIRouter(prefix="/oauth", tags=["OAuth Login"])


class AuthStatus(BaseModel):
    """Authentication status response."""

    configured: bool = Field(description="Whether the provider is configured")
    provider: str = Field(description="Provider display name")
    authenticated: bool = Field(description="Whether the request carries a session")
    username: str | None = Field(default=None, description="Current username")
    role: str | None = Field(default=None, description="Current role")


class DiscoverRequest(BaseModel):
    """Discovery request body."""

    url: str = Field(description="Issuer or discovery URL")


def start_response(ctx: RequestContext, container: AuthContainer) -> RedirectResponse:
    """Begin the authorization request for the initiate trigger."""
    try:
        redirect = container.flow.start_request(ctx)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except ConfigurationError as e:
        logger.error(f"Login flow not configured: {e.message}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    return RedirectResponse(url=redirect.url, status_code=redirect.status_code)


async def callback_response(
    ctx: RequestContext,
    browser: BrowserSession,
    container: AuthContainer,
) -> RedirectResponse:
    """Complete the callback and set the session cookie on login."""
    redirect = await container.flow.handle_callback_request(ctx)
    response = RedirectResponse(url=redirect.url, status_code=redirect.status_code)
    return browser.apply(response, secure=container.settings.session.secure_cookie)


@router.get("/start")
def start(ctx: Context, container: Container) -> RedirectResponse:
    """Redirect to the provider's authorization endpoint.

    Query:
        redirect_to: Where to land after login (same site only)
        test: "1" for an admin test login (claims only, nobody logs in)
    """
    return start_response(ctx, container)


@router.get("/callback")
async def callback(ctx: Context, browser: Browser, container: Container) -> RedirectResponse:
    """Provider redirect target (``code``, ``state`` or ``error``)."""
    return await callback_response(ctx, browser, container)


@router.get("/login-error")
def login_error(ctx: Context, container: Container) -> dict[str, Any]:
    """Login error for this caller, returned once."""
    return {"error": container.flow.pop_login_error(ctx)}


@router.get("/status")
def auth_status(ctx: Context, container: Container) -> AuthStatus:
    provider = container.settings.provider
    return AuthStatus(
        configured=bool(provider.authorize_endpoint and provider.client_id),
        provider=provider.display_name,
        authenticated=ctx.user is not None,
        username=ctx.user.username if ctx.user else None,
        role=ctx.user.role if ctx.user else None,
    )


@router.get("/logout")
def logout(ctx: Context, browser: Browser, container: Container) -> RedirectResponse:
    """Clear the session; OAuth users continue to the end-session endpoint."""
    container.logout.mark(ctx, ctx.user)
    browser.clear()

    location = container.settings.login_url + "?loggedout=true"
    location = container.logout.intercept(ctx, location)

    response = RedirectResponse(url=location, status_code=status.HTTP_302_FOUND)
    return browser.apply(response)


@router.get("/test-claims")
def test_claims(ctx: AdminContext, container: Container) -> dict[str, Any]:
    """Claims from the caller's last test login (available once)."""
    claims = container.flow.pop_test_claims(ctx)
    if claims is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No test claims available")
    return {
        "claims": claims,
        "metadata": decode_metadata(claims, container.settings.mapping.metadata_claim),
    }


@router.get("/available-claims")
def available_claims(ctx: AdminContext, container: Container) -> dict[str, Any]:
    """Claims seen in the last test login, for mapping suggestions."""
    return {"claims": container.flow.available_claims() or {}}


@router.post("/discover")
async def discover(
    body: DiscoverRequest,
    ctx: AdminContext,
    container: Container,
) -> DiscoveryDocument:
    """Fetch a provider discovery document."""
    try:
        return await container.client.discover(body.url)
    except DiscoveryError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
