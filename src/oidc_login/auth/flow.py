"""OAuth 2.0 Authorization Code flow controller.

Flow states:

    Idle -> AuthorizationRequested -> CallbackReceived -> TokenExchanged
         -> ClaimsFetched -> LoggedIn | TestCompleted | Failed

The controller never performs HTTP redirects itself. Each entry point
returns a result value and the hosting layer turns it into a response:

    Redirect(url)                  send the browser elsewhere
    LoggedIn(identity, redirect_to)
    TestCompleted(claims, redirect_to)
    Failure(error)                 protocol or identity error, user may retry

ConfigurationError and PermissionDeniedError are raised, not returned:
the flow cannot start at all and the operator must act.
"""

import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode, urlsplit

from loguru import logger
from pydantic import BaseModel, Field

from oidc_login.auth.client import OAuthClient
from oidc_login.auth.context import RequestContext
from oidc_login.auth.errors import (
    ConfigurationError,
    IdentityError,
    InvalidStateError,
    NoAccessTokenError,
    NoCodeError,
    OIDCLoginError,
    PermissionDeniedError,
    ProtocolError,
)
from oidc_login.auth.identity import IdentityResolver
from oidc_login.auth.state_store import StateStore
from oidc_login.auth.users import Identity
from oidc_login.settings import Settings

STATE_PREFIX = "state:"
TEST_CLAIMS_PREFIX = "test_claims:"
AVAILABLE_CLAIMS_KEY = "available_claims"
LOGIN_ERROR_PREFIX = "login_error:"


class FlowSession(BaseModel):
    """Pending authorization request, keyed by its state token."""

    state: str
    is_test: bool = False
    redirect_to: str = ""
    initiator: str = Field(default="", description="Local user ID that started a test login")
    nonce: str | None = Field(default=None, description="Nonce sent with the request (not verified)")
    created_at: float = Field(default_factory=time.time)


@dataclass(frozen=True)
class Redirect:
    url: str
    status_code: int = 302


@dataclass(frozen=True)
class LoggedIn:
    identity: Identity
    redirect_to: str


@dataclass(frozen=True)
class TestCompleted:
    __test__ = False  # not a pytest class

    claims: dict[str, Any]
    redirect_to: str


@dataclass(frozen=True)
class Failure:
    error: OIDCLoginError

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message


CallbackResult = LoggedIn | TestCompleted | Failure


def append_query(url: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class FlowController:
    """Orchestrates authorization requests and callbacks.

    Args:
        settings: Application settings (site URLs, provider, store TTLs)
        store: Ephemeral state store
        client: Provider HTTP client
        identity_resolver: Maps claims onto local identities
    """

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        client: OAuthClient,
        identity_resolver: IdentityResolver,
    ):
        self.settings = settings
        self.store = store
        self.client = client
        self.identity_resolver = identity_resolver

    @property
    def provider(self):
        return self.client.provider

    # ------------------------------------------------------------------
    # Authorization request
    # ------------------------------------------------------------------

    def start_request(self, ctx: RequestContext) -> Redirect:
        """Handle the initiate trigger (``test`` and ``redirect_to`` params).

        Raises:
            PermissionDeniedError: Test login requested by a non-admin
            ConfigurationError: Provider not configured
        """
        is_test = ctx.param("test") == "1"

        if is_test:
            if not ctx.is_admin:
                raise PermissionDeniedError("Not allowed to run a test login.")
            redirect_to = self.settings.admin_settings_url
        else:
            redirect_to = self.safe_redirect(ctx.param("redirect_to"))

        return self.initiate(is_test=is_test, redirect_to=redirect_to, initiator=ctx.user_id)

    def initiate(self, is_test: bool = False, redirect_to: str = "", initiator: str = "") -> Redirect:
        """Build the authorization URL and persist the pending request.

        Args:
            is_test: Test login (claims go back to the initiator, nobody logs in)
            redirect_to: Where to send the user after login
            initiator: Local user ID of the admin running a test login

        Returns:
            Redirect to the provider's authorization endpoint

        Raises:
            ConfigurationError: Authorize endpoint or client ID missing, or a
                test login without the state parameter
        """
        provider = self.provider
        if not provider.authorize_endpoint or not provider.client_id:
            raise ConfigurationError(
                "OAuth is not configured. Configure the SSO settings first."
            )

        # Test logins are only recognizable through their pending request
        if is_test and not provider.send_state:
            raise ConfigurationError("Test login requires the state parameter.")

        params = {
            "response_type": "code",
            "client_id": provider.client_id,
            "redirect_uri": self.settings.callback_url,
            "scope": provider.scope,
        }

        nonce = secrets.token_urlsafe(32) if provider.send_nonce else None

        if provider.send_state:
            state = secrets.token_urlsafe(32)
            params["state"] = state
            session = FlowSession(
                state=state,
                is_test=is_test,
                redirect_to=redirect_to,
                initiator=initiator,
                nonce=nonce,
            )
            self.store.put(
                STATE_PREFIX + state,
                session.model_dump(mode="json"),
                self.settings.store.state_ttl,
            )

        if nonce:
            params["nonce"] = nonce

        logger.info(f"Authorization request started (test={is_test})")
        return Redirect(append_query(provider.authorize_endpoint, params))

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    def take_session(self, state: str) -> FlowSession | None:
        """Consume the pending request for ``state`` (single use)."""
        if not state:
            return None
        data = self.store.take_once(STATE_PREFIX + state)
        if not isinstance(data, dict):
            return None
        return FlowSession.model_validate(data)

    async def handle_callback(self, ctx: RequestContext, code: str, state: str) -> CallbackResult:
        """Validate the callback, exchange the code and resolve the user.

        Args:
            ctx: Request context (provides the login capability)
            code: Authorization code
            state: State token from the callback

        Returns:
            LoggedIn, TestCompleted, or Failure
        """
        if not code:
            return Failure(NoCodeError("No authorization code received."))

        session = await self._offload(self.take_session, state)
        if session is None and self.provider.send_state:
            logger.warning("Callback rejected: unknown, expired or reused state")
            return Failure(InvalidStateError("Invalid state parameter."))

        try:
            tokens = await self.client.exchange_code(code)
            access_token = tokens.get("access_token")
            if not isinstance(access_token, str) or not access_token:
                raise NoAccessTokenError("No access token received.")
            claims = await self.client.fetch_userinfo(access_token)
        except ProtocolError as e:
            return Failure(e)

        if session is not None and session.is_test:
            return await self._offload(self._complete_test, session, claims)

        try:
            identity = await self._offload(self.identity_resolver.find_or_create, claims)
        except IdentityError as e:
            return Failure(e)

        ctx.login(identity)
        redirect_to = self.safe_redirect(session.redirect_to if session else "")
        logger.info(f"User {identity.username} logged in via OAuth")
        return LoggedIn(identity=identity, redirect_to=redirect_to)

    def _complete_test(self, session: FlowSession, claims: dict[str, Any]) -> TestCompleted:
        store_settings = self.settings.store
        self.store.put(
            TEST_CLAIMS_PREFIX + session.initiator, claims, store_settings.test_claims_ttl
        )
        self.store.put(AVAILABLE_CLAIMS_KEY, claims, store_settings.available_claims_ttl)
        logger.info(f"Test login completed with {len(claims)} claims")
        return TestCompleted(
            claims=claims,
            redirect_to=append_query(self.settings.admin_settings_url, {"test_complete": "1"}),
        )

    async def handle_callback_request(self, ctx: RequestContext) -> Redirect:
        """Shared semantics of every callback route.

        Reads ``code``, ``state`` and ``error`` from the query. Errors are
        stored for the login page and the browser goes back to login.
        """
        error = ctx.param("error")
        if error:
            message = ctx.param("error_description") or error
            logger.warning(f"Provider returned error: {error}")
            await self._offload(self.set_login_error, ctx, message)
            return Redirect(self.settings.login_url)

        result = await self.handle_callback(ctx, ctx.param("code"), ctx.param("state"))

        if isinstance(result, Failure):
            logger.warning(f"Login failed ({result.code}): {result.message}")
            await self._offload(self.set_login_error, ctx, result.message)
            return Redirect(self.settings.login_url)

        return Redirect(result.redirect_to)

    async def _offload(self, func, *args):
        """Run blocking store or repository work off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # ------------------------------------------------------------------
    # One-time transfers
    # ------------------------------------------------------------------

    def pop_test_claims(self, ctx: RequestContext) -> dict[str, Any] | None:
        """Claims of the caller's last test login, readable once."""
        if not ctx.user_id:
            return None
        claims = self.store.take_once(TEST_CLAIMS_PREFIX + ctx.user_id)
        return claims if isinstance(claims, dict) else None

    def available_claims(self) -> dict[str, Any] | None:
        """Last seen claims for mapping suggestions (best effort)."""
        claims = self.store.get(AVAILABLE_CLAIMS_KEY)
        return claims if isinstance(claims, dict) else None

    def set_login_error(self, ctx: RequestContext, message: str) -> None:
        self.store.put(
            LOGIN_ERROR_PREFIX + ctx.fingerprint, message, self.settings.store.login_error_ttl
        )

    def pop_login_error(self, ctx: RequestContext) -> str | None:
        message = self.store.take_once(LOGIN_ERROR_PREFIX + ctx.fingerprint)
        return message if isinstance(message, str) else None

    def safe_redirect(self, target: str) -> str:
        """Keep redirects on this site; anything else goes to the admin default."""
        if not target:
            return self.settings.admin_url

        parts = urlsplit(target)
        if not parts.scheme and not parts.netloc:
            if target.startswith("/") and not target.startswith("//"):
                return self.settings.url(target)
            return self.settings.admin_url

        site = urlsplit(self.settings.site_url)
        if (parts.scheme, parts.netloc) == (site.scheme, site.netloc):
            return target

        logger.warning(f"Ignoring off-site redirect target: {parts.netloc}")
        return self.settings.admin_url
