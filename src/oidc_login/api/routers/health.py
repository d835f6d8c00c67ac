"""Health endpoint.

Public, no authentication required.
"""

from fastapi import APIRouter
from pydantic import BaseModel, Field

from oidc_login.api.dependencies import Container
from oidc_login.version import __version__

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Health status (ok, degraded)")
    version: str = Field(description="Application version")
    provider_configured: bool = Field(description="Whether the OAuth provider is configured")


@router.get("/health")
async def health(container: Container) -> HealthResponse:
    """Health check endpoint.

    Reports ``degraded`` while the provider is not configured, since no
    login can succeed in that state.
    """
    provider = container.settings.provider
    configured = bool(provider.authorize_endpoint and provider.client_id)
    return HealthResponse(
        status="ok" if configured else "degraded",
        version=__version__,
        provider_configured=configured,
    )
