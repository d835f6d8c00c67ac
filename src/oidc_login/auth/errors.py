"""Error taxonomy for the login flow.

- ConfigurationError: operator must fix settings, the flow cannot start
- ProtocolError: provider round-trip failed, user may retry
- IdentityError: claims could not be mapped onto a local user

Every error carries a stable ``code`` and a human-readable message that is
safe to show on the login page (no secrets, no tokens).
"""


class OIDCLoginError(Exception):
    """Base class for all login flow errors."""

    code = "oidc_login_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(OIDCLoginError):
    """Provider settings are incomplete."""

    code = "configuration_error"


class PermissionDeniedError(OIDCLoginError):
    """Caller lacks the privilege for the requested operation."""

    code = "permission_denied"


class ProtocolError(OIDCLoginError):
    code = "protocol_error"


class NoCodeError(ProtocolError):
    code = "no_code"


class InvalidStateError(ProtocolError):
    code = "invalid_state"


class NoAccessTokenError(ProtocolError):
    code = "no_access_token"


class TokenError(ProtocolError):
    code = "token_error"


class UserInfoError(ProtocolError):
    code = "userinfo_error"


class DiscoveryError(ProtocolError):
    code = "discovery_error"


class IdentityError(OIDCLoginError):
    code = "identity_error"


class RoleNotMappedError(IdentityError):
    code = "role_not_mapped"


class UsernameUnavailableError(IdentityError):
    code = "no_username"


class RepositoryError(IdentityError):
    code = "repository_error"
