"""oidc-login API server - FastAPI application hosting the login flow.

Running the Server
------------------

Development (with auto-reload):
    oidc-login serve --reload

Production:
    oidc-login serve --host 0.0.0.0 --port 8000

Configuration comes from OIDC_LOGIN_* environment variables or .env, e.g.:
    OIDC_LOGIN_PROVIDER__CLIENT_ID=my-client
    OIDC_LOGIN_PROVIDER__AUTHORIZE_ENDPOINT=https://idp.example.com/oauth/v2/authorize

Endpoints
---------
- /                               : API information, or the query-triggered
                                    flow (?oidc-login-start=1, ?oidc-login-callback=1)
- /health                         : Health check with version
- /oauth/start, /oauth/callback   : Login flow
- /oauth/logout                   : Logout (single logout when configured)
- /docs                           : OpenAPI documentation
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from loguru import logger

from oidc_login.api.dependencies import Browser, Container, Context
from oidc_login.api.routers.health import router as health_router
from oidc_login.api.routers.oauth import callback_response, start_response
from oidc_login.api.routers.oauth import router as oauth_router
from oidc_login.auth.factory import AuthContainer, build_container
from oidc_login.settings import Settings
from oidc_login.version import __version__

START_FLAG = "oidc-login-start"
CALLBACK_FLAG = "oidc-login-callback"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting oidc-login API")
    yield
    logger.info("Shutting down oidc-login API")


def create_app(
    settings: Settings | None = None,
    container: AuthContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (module defaults if None)
        container: Pre-built components (built from settings if None)
    """
    if container is None:
        container = build_container(settings)

    app = FastAPI(
        title="oidc-login API",
        description="OAuth 2.0 / OIDC Authorization Code login for local users",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    @app.get("/", response_model=None)
    async def root(
        ctx: Context,
        browser: Browser,
        container: Container,
    ) -> RedirectResponse | dict[str, Any]:
        """Root endpoint: query-triggered flow, otherwise API information."""
        if CALLBACK_FLAG in ctx.query:
            return await callback_response(ctx, browser, container)
        if START_FLAG in ctx.query:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, start_response, ctx, container)
        return {
            "name": "oidc-login API",
            "version": __version__,
            "login_url": f"{container.settings.home_url}?{START_FLAG}=1",
            "callback_url": container.settings.callback_url,
            "docs": "/docs",
        }

    app.include_router(health_router)
    app.include_router(oauth_router)

    return app


# Main entry point for uvicorn
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "oidc_login.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
