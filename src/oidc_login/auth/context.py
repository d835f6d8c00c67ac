"""Per-request context passed into the flow controller.

The hosting layer builds one RequestContext per HTTP request. The flow
never reads framework request objects directly.
"""

import hashlib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from oidc_login.auth.users import Identity


def caller_fingerprint(remote_addr: str, user_agent: str) -> str:
    """Short, stable identifier for an anonymous browser (IP + user agent)."""
    digest = hashlib.sha256(f"{remote_addr}{user_agent}".encode("utf-8")).hexdigest()
    return digest[:12]


def _no_login(identity: Identity) -> None:
    raise RuntimeError("RequestContext has no login capability")


@dataclass
class RequestContext:
    """Explicit request state for one flow step.

    Attributes:
        query: Query parameters of the incoming request
        fingerprint: Caller fingerprint (see caller_fingerprint)
        user: Identity of the already-authenticated caller, if any
        is_admin: Whether the caller may run test logins
        login: Capability that marks an identity as authenticated for the
            rest of this browser session
    """

    query: Mapping[str, str] = field(default_factory=dict)
    fingerprint: str = ""
    user: Identity | None = None
    is_admin: bool = False
    login: Callable[[Identity], None] = _no_login

    def param(self, name: str) -> str:
        return (self.query.get(name) or "").strip()

    @property
    def user_id(self) -> str:
        return self.user.id if self.user else ""
