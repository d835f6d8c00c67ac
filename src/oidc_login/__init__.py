"""OAuth 2.0 / OIDC login service."""

from oidc_login.version import __version__

__all__ = ["__version__"]
