"""OAuth 2.0 / OIDC login for a local user base.

This module provides the Authorization Code flow with:
- CSRF state handling over a TTL state store (single use)
- Token exchange with configurable client credential transmission
- Claim resolution, including Base64-encoded provider metadata
- Ordered, exact-match role mapping
- Find-or-create of local identities from claims
- Single logout through the provider's end-session endpoint
"""

from oidc_login.auth.context import RequestContext, caller_fingerprint
from oidc_login.auth.errors import (
    ConfigurationError,
    IdentityError,
    OIDCLoginError,
    PermissionDeniedError,
    ProtocolError,
)
from oidc_login.auth.factory import AuthContainer, build_container
from oidc_login.auth.flow import Failure, FlowController, LoggedIn, Redirect, TestCompleted
from oidc_login.auth.users import Identity, UserRepository

__all__ = [
    "AuthContainer",
    "ConfigurationError",
    "Failure",
    "FlowController",
    "Identity",
    "IdentityError",
    "LoggedIn",
    "OIDCLoginError",
    "PermissionDeniedError",
    "ProtocolError",
    "Redirect",
    "RequestContext",
    "TestCompleted",
    "UserRepository",
    "build_container",
    "caller_fingerprint",
]
