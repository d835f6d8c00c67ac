"""Single logout through the provider's end-session endpoint.

Two steps, because the local session is gone by the time the logout
redirect is issued:

1. before the session is cleared, ``mark`` stores a short-lived marker
   keyed by the caller fingerprint (only for OAuth users, and only when an
   end-session endpoint is configured)
2. ``intercept`` rewrites the outgoing redirect to the login page into a
   redirect to the end-session endpoint; the marker is consumed, so the
   rewrite happens at most once
"""

from loguru import logger

from oidc_login.auth.context import RequestContext
from oidc_login.auth.flow import append_query
from oidc_login.auth.state_store import StateStore
from oidc_login.auth.users import Identity
from oidc_login.settings import Settings

LOGOUT_PREFIX = "logout:"


class LogoutHandler:
    """Redirects OAuth users to the provider's end-session endpoint once."""

    def __init__(self, settings: Settings, store: StateStore):
        self.settings = settings
        self.store = store

    def mark(self, ctx: RequestContext, identity: Identity | None) -> bool:
        """Arm the end-session redirect for this caller.

        Returns:
            True if a marker was stored
        """
        if identity is None or not identity.subject:
            return False

        provider = self.settings.provider
        if not provider.end_session_endpoint:
            return False

        self.store.put(
            LOGOUT_PREFIX + ctx.fingerprint,
            {
                "end_session_endpoint": provider.end_session_endpoint,
                "client_id": provider.client_id,
            },
            self.settings.store.logout_marker_ttl,
        )
        logger.debug(f"Single logout armed for {identity.username}")
        return True

    def intercept(self, ctx: RequestContext, location: str) -> str:
        """Return the redirect target to use instead of ``location``.

        Only redirects to the login page are considered.
        """
        if self.settings.login_path not in location:
            return location

        marker = self.store.take_once(LOGOUT_PREFIX + ctx.fingerprint)
        if not isinstance(marker, dict) or not marker.get("end_session_endpoint"):
            return location

        params = {}
        if marker.get("client_id"):
            params["client_id"] = marker["client_id"]
        params["post_logout_redirect_uri"] = self.settings.home_url

        logger.info("Redirecting to provider end-session endpoint")
        return append_query(marker["end_session_endpoint"], params)
