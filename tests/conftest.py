"""Shared fixtures: settings, in-memory stores and a fake identity provider."""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from oidc_login.auth.factory import AuthContainer, build_container
from oidc_login.auth.state_store_memory import MemoryStateStore
from oidc_login.auth.users import MemoryUserRepository
from oidc_login.settings import MappingSettings, ProviderSettings, Settings

IDP = "https://idp.example.com"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeProvider:
    """Scripted identity provider behind httpx.MockTransport."""

    token_status: int = 200
    token_body: Any = field(default_factory=lambda: {"access_token": "at-123", "token_type": "Bearer"})
    userinfo_status: int = 200
    userinfo_body: Any = field(
        default_factory=lambda: {
            "sub": "abc123",
            "email": "a@b.com",
            "given_name": "Jane",
            "family_name": "Doe",
        }
    )
    discovery_status: int = 200
    discovery_body: Any = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/oauth/v2/token":
            return self._respond(self.token_status, self.token_body)
        if path == "/oidc/v1/userinfo":
            return self._respond(self.userinfo_status, self.userinfo_body)
        if path.endswith("/.well-known/openid-configuration"):
            return self._respond(self.discovery_status, self.discovery_body)
        return httpx.Response(404)

    def _respond(self, status_code: int, body: Any) -> httpx.Response:
        if isinstance(body, (bytes, str)):
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def last_form(self) -> dict[str, str]:
        """Form fields of the last token request."""
        token_requests = [r for r in self.requests if r.url.path == "/oauth/v2/token"]
        body = parse_qs(token_requests[-1].content.decode())
        return {key: values[0] for key, values in body.items()}


def make_provider_settings(**overrides: Any) -> ProviderSettings:
    values = {
        "display_name": "Example IdP",
        "client_id": "client-1",
        "client_secret": "s3cret",
        "authorize_endpoint": f"{IDP}/oauth/v2/authorize",
        "token_endpoint": f"{IDP}/oauth/v2/token",
        "userinfo_endpoint": f"{IDP}/oidc/v1/userinfo",
        "end_session_endpoint": f"{IDP}/oidc/v1/end_session",
    }
    values.update(overrides)
    return ProviderSettings(**values)


def make_settings(
    provider: ProviderSettings | None = None,
    mapping: MappingSettings | None = None,
) -> Settings:
    return Settings(
        site_url="https://site.example.com",
        provider=provider or make_provider_settings(),
        mapping=mapping or MappingSettings(),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStateStore(clock=clock)


@pytest.fixture
def users():
    return MemoryUserRepository()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def container(settings, store, users, fake_provider) -> AuthContainer:
    return build_container(settings, store=store, users=users, transport=fake_provider.transport)


