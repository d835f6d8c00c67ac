"""Outbound HTTP calls to the identity provider.

- token exchange (authorization_code grant)
- userinfo retrieval
- OIDC discovery

All calls use bounded timeouts and wrap transport failures in the matching
ProtocolError. Secrets and tokens never appear in error messages or logs.
"""

from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from oidc_login.auth.errors import DiscoveryError, TokenError, UserInfoError
from oidc_login.settings import ProviderSettings

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


class DiscoveryDocument(BaseModel):
    """Fields read from a provider's discovery document."""

    issuer: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str = ""
    end_session_endpoint: str = ""
    jwks_uri: str = ""
    scopes_supported: list[str] = Field(default_factory=list)
    response_types_supported: list[str] = Field(default_factory=list)
    grant_types_supported: list[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] = Field(default_factory=list)
    claims_supported: list[str] = Field(default_factory=list)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "DiscoveryDocument":
        """Pick known fields, defaulting any that are missing or mistyped."""
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            value = config.get(name)
            if field.annotation is str and isinstance(value, str):
                values[name] = value
            elif field.annotation == list[str] and isinstance(value, list):
                values[name] = [item for item in value if isinstance(item, str)]
        return cls(**values)

    def provider_updates(self) -> dict[str, str]:
        """Endpoint fields to copy onto ProviderSettings (non-empty only).

        Example:
            >>> provider = provider.model_copy(update=document.provider_updates())
        """
        updates = {
            "authorize_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "end_session_endpoint": self.end_session_endpoint,
        }
        return {key: value for key, value in updates.items() if value}


def discovery_url_for(url: str) -> str:
    """Append the well-known discovery path unless already present."""
    if WELL_KNOWN_PATH in url:
        return url
    return url.rstrip("/") + WELL_KNOWN_PATH


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class OAuthClient:
    """HTTP client for one identity provider.

    Args:
        provider: Provider endpoints, credentials and request flags
        redirect_uri: Fixed callback URL sent with the token request
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        provider: ProviderSettings,
        redirect_uri: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider
        self.redirect_uri = redirect_uri
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def token_request_data(self, code: str) -> dict[str, str]:
        """Form body for the token request."""
        data = {
            "grant_type": self.provider.grant_type,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        if self.provider.credentials_in_body:
            data["client_id"] = self.provider.client_id
            data["client_secret"] = self.provider.client_secret
        if self.provider.send_scope_in_body:
            data["scope"] = self.provider.scope
        return data

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback

        Returns:
            Parsed token response

        Raises:
            TokenError: Transport failure, non-200 status, provider error,
                or an unparsable body
        """
        auth = None
        if self.provider.credentials_in_header:
            auth = httpx.BasicAuth(self.provider.client_id, self.provider.client_secret)

        try:
            async with self._client(self.provider.token_timeout) as client:
                response = await client.post(
                    self.provider.token_endpoint,
                    data=self.token_request_data(code),
                    headers={"Accept": "application/json"},
                    auth=auth,
                )
        except httpx.HTTPError as e:
            logger.warning(f"Token request failed: {type(e).__name__}")
            raise TokenError(f"Token request failed: {e}") from e

        body = _json_object(response)

        if response.status_code != 200 or body is None or body.get("error"):
            body = body or {}
            detail = (
                body.get("error_description")
                or body.get("error")
                or (f"HTTP {response.status_code}" if response.status_code != 200 else None)
                or "Invalid token response"
            )
            logger.warning(f"Token endpoint rejected code exchange: {detail}")
            raise TokenError(f"Token error: {detail}")

        logger.debug(f"Token response received with keys: {sorted(body.keys())}")
        return body

    async def fetch_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch claims from the userinfo endpoint.

        Args:
            access_token: Bearer token from the token response

        Returns:
            Userinfo claims

        Raises:
            UserInfoError: Transport failure, non-200 status, or a body that
                is not a JSON object
        """
        try:
            async with self._client(self.provider.token_timeout) as client:
                response = await client.get(
                    self.provider.userinfo_endpoint,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(f"UserInfo request failed: {type(e).__name__}")
            raise UserInfoError(f"UserInfo request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"UserInfo endpoint returned HTTP {response.status_code}")
            raise UserInfoError(f"UserInfo error: HTTP {response.status_code}")

        claims = _json_object(response)
        if claims is None:
            raise UserInfoError("Invalid UserInfo response.")

        logger.debug(f"UserInfo returned {len(claims)} claims")
        return claims

    async def discover(self, url: str) -> DiscoveryDocument:
        """Fetch and map a provider's discovery document.

        Args:
            url: Issuer/base URL, with or without the well-known path

        Returns:
            DiscoveryDocument with empty defaults for missing fields

        Raises:
            DiscoveryError: Transport failure, non-200 status, or invalid JSON
        """
        discovery_url = discovery_url_for(url)

        try:
            async with self._client(self.provider.discovery_timeout) as client:
                response = await client.get(discovery_url)
        except httpx.HTTPError as e:
            logger.warning(f"Discovery request to {discovery_url} failed: {e}")
            raise DiscoveryError(f"Discovery request failed: {e}") from e

        if response.status_code != 200:
            raise DiscoveryError(f"HTTP error: {response.status_code}")

        config = _json_object(response)
        if config is None:
            raise DiscoveryError("Invalid JSON in discovery response.")

        logger.info(f"Fetched OIDC config from {discovery_url}")
        return DiscoveryDocument.from_config(config)
