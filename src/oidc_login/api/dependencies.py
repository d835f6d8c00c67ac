"""FastAPI dependencies for the login routes.

Translates the incoming request into an explicit RequestContext and gives
the flow a login capability backed by the session cookie.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status

from oidc_login.auth.context import RequestContext, caller_fingerprint
from oidc_login.auth.factory import AuthContainer
from oidc_login.auth.sessions import SessionManager
from oidc_login.auth.users import Identity


def get_container(request: Request) -> AuthContainer:
    """Container built by the app factory."""
    return request.app.state.container


class BrowserSession:
    """Session cookie state for one request.

    ``login`` is handed to the flow controller; the token it produces is
    written to the response by ``apply``.
    """

    def __init__(self, sessions: SessionManager, token: str | None):
        self.sessions = sessions
        self.token = token
        self.user = sessions.load_identity(token)
        self._issued: str | None = None
        self._cleared = False

    def login(self, identity: Identity) -> None:
        self._issued = self.sessions.create_token(identity)
        self.user = identity

    def clear(self) -> None:
        self._cleared = True
        self.user = None

    def apply(self, response: Response, secure: bool = False) -> Response:
        if self._issued:
            response.set_cookie(
                key=self.sessions.cookie_name,
                value=self._issued,
                max_age=self.sessions.max_age,
                httponly=True,
                secure=secure,
                samesite="lax",
            )
        elif self._cleared:
            response.delete_cookie(self.sessions.cookie_name)
        return response


def get_browser_session(
    request: Request,
    container: Annotated[AuthContainer, Depends(get_container)],
) -> BrowserSession:
    token = request.cookies.get(container.sessions.cookie_name)
    return BrowserSession(container.sessions, token)


def get_request_context(
    request: Request,
    container: Annotated[AuthContainer, Depends(get_container)],
    browser: Annotated[BrowserSession, Depends(get_browser_session)],
) -> RequestContext:
    """Build the RequestContext for the flow controller.

    Example:
        >>> @router.get("/callback")
        >>> async def callback(ctx: Context):
        ...     return await flow.handle_callback_request(ctx)
    """
    remote_addr = request.client.host if request.client else ""
    user = browser.user
    return RequestContext(
        query=dict(request.query_params),
        fingerprint=caller_fingerprint(remote_addr, request.headers.get("user-agent", "")),
        user=user,
        is_admin=user is not None and user.role in container.settings.admin_roles,
        login=browser.login,
    )


def require_admin(
    ctx: Annotated[RequestContext, Depends(get_request_context)],
) -> RequestContext:
    """Require an admin session (403 otherwise)."""
    if not ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return ctx


# Type aliases for convenience
Container = Annotated[AuthContainer, Depends(get_container)]
Browser = Annotated[BrowserSession, Depends(get_browser_session)]
Context = Annotated[RequestContext, Depends(get_request_context)]
AdminContext = Annotated[RequestContext, Depends(require_admin)]
