"""Composition root for the login flow.

Builds every component once and wires them by reference. The API and CLI
receive the resulting container instead of looking components up globally.
"""

from dataclasses import dataclass

import httpx
from loguru import logger

from oidc_login.auth.client import OAuthClient
from oidc_login.auth.flow import FlowController
from oidc_login.auth.identity import IdentityResolver
from oidc_login.auth.logout import LogoutHandler
from oidc_login.auth.roles import RoleMapper
from oidc_login.auth.sessions import SessionManager
from oidc_login.auth.state_store import StateStore
from oidc_login.auth.state_store_factory import create_state_store
from oidc_login.auth.users import UserRepository, create_user_repository
from oidc_login.settings import Settings


@dataclass
class AuthContainer:
    """Wired login components for one process."""

    settings: Settings
    store: StateStore
    users: UserRepository
    role_mapper: RoleMapper
    identity_resolver: IdentityResolver
    client: OAuthClient
    flow: FlowController
    logout: LogoutHandler
    sessions: SessionManager


def build_container(
    settings: Settings | None = None,
    store: StateStore | None = None,
    users: UserRepository | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthContainer:
    """Create all login components.

    Args:
        settings: Application settings (module defaults if None)
        store: State store override (built from settings if None)
        users: User repository override (built from settings if None)
        transport: httpx transport for provider calls (tests)

    Returns:
        AuthContainer with every component wired

    Example:
        >>> container = build_container(Settings(), transport=httpx.MockTransport(handler))
        >>> redirect = container.flow.initiate()
    """
    if settings is None:
        from oidc_login.settings import settings as default_settings

        settings = default_settings

    if store is None:
        store = create_state_store(settings.store)
    if users is None:
        users = create_user_repository(settings.users_backend, settings.users_path)

    role_mapper = RoleMapper(settings.mapping)
    identity_resolver = IdentityResolver(users, settings.mapping, role_mapper)
    client = OAuthClient(settings.provider, settings.callback_url, transport=transport)
    flow = FlowController(settings, store, client, identity_resolver)

    logger.info(
        f"Login flow ready (provider: {settings.provider.display_name or 'unnamed'}, "
        f"store: {type(store).__name__}, users: {type(users).__name__})"
    )

    return AuthContainer(
        settings=settings,
        store=store,
        users=users,
        role_mapper=role_mapper,
        identity_resolver=identity_resolver,
        client=client,
        flow=flow,
        logout=LogoutHandler(settings, store),
        sessions=SessionManager(settings.session, users),
    )
