"""Test the authorization code flow controller."""

import threading
from urllib.parse import parse_qs, urlsplit

import pytest
from conftest import IDP, FakeProvider, make_provider_settings, make_settings

from oidc_login.auth.context import RequestContext, caller_fingerprint
from oidc_login.auth.errors import ConfigurationError, PermissionDeniedError
from oidc_login.auth.factory import build_container
from oidc_login.auth.flow import (
    AVAILABLE_CLAIMS_KEY,
    STATE_PREFIX,
    Failure,
    LoggedIn,
    Redirect,
    TestCompleted,
)
from oidc_login.auth.users import Identity, MemoryUserRepository
from oidc_login.settings import MappingSettings

SITE = "https://site.example.com"
ADMIN = Identity(id="admin-1", username="admin", email="admin@example.com", role="administrator")


def query_of(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


def browser(**query) -> RequestContext:
    """Anonymous browser that records logins."""
    ctx = RequestContext(query=query, fingerprint=caller_fingerprint("10.0.0.1", "pytest"))
    ctx.logged_in = []
    ctx.login = ctx.logged_in.append
    return ctx


def admin(**query) -> RequestContext:
    ctx = browser(**query)
    ctx.user = ADMIN
    ctx.is_admin = True
    return ctx


# =================================================================
# Authorization request
# =================================================================


def test_initiate_builds_authorization_url(container, store):
    """Test the authorize redirect carries all parameters and persists state."""
    redirect = container.flow.initiate()

    assert isinstance(redirect, Redirect)
    assert redirect.url.startswith(f"{IDP}/oauth/v2/authorize?")

    params = query_of(redirect.url)
    assert params["response_type"] == "code"
    assert params["client_id"] == "client-1"
    assert params["redirect_uri"] == f"{SITE}/oauth/callback"
    assert params["scope"] == "openid profile email urn:zitadel:iam:user:metadata"
    assert len(params["state"]) >= 32
    assert "nonce" not in params

    session = store.get(STATE_PREFIX + params["state"])
    assert session["is_test"] is False
    assert session["redirect_to"] == ""


def test_initiate_unique_states(container):
    """Test every request gets a fresh state."""
    first = query_of(container.flow.initiate().url)["state"]
    second = query_of(container.flow.initiate().url)["state"]
    assert first != second


def test_initiate_with_nonce(store, users, fake_provider):
    """Test the nonce is sent and recorded when enabled."""
    settings = make_settings(make_provider_settings(send_nonce=True))
    container = build_container(settings, store=store, users=users, transport=fake_provider.transport)

    params = query_of(container.flow.initiate().url)

    assert params["nonce"]
    assert store.get(STATE_PREFIX + params["state"])["nonce"] == params["nonce"]


@pytest.mark.parametrize("missing", ["authorize_endpoint", "client_id"])
def test_initiate_requires_configuration(store, users, missing):
    """Test missing provider settings raise ConfigurationError."""
    settings = make_settings(make_provider_settings(**{missing: ""}))
    container = build_container(settings, store=store, users=users)

    with pytest.raises(ConfigurationError, match="OAuth is not configured"):
        container.flow.initiate()


def test_start_request_test_mode_requires_admin(container):
    """Test non-admins cannot start a test login."""
    with pytest.raises(PermissionDeniedError):
        container.flow.start_request(browser(test="1"))


def test_test_login_requires_state(store, users, fake_provider):
    """Test test logins are refused when the state parameter is disabled."""
    settings = make_settings(make_provider_settings(send_state=False))
    container = build_container(settings, store=store, users=users, transport=fake_provider.transport)

    with pytest.raises(ConfigurationError, match="Test login requires the state parameter"):
        container.flow.start_request(admin(test="1"))
    with pytest.raises(ConfigurationError):
        container.flow.initiate(is_test=True)

    assert fake_provider.requests == []
    assert users.all() == []


def test_start_request_records_redirect_and_initiator(container, store):
    """Test start_request stores the sanitized target and the admin."""
    login_state = query_of(container.flow.start_request(browser(redirect_to="/account")).url)["state"]
    test_state = query_of(container.flow.start_request(admin(test="1")).url)["state"]

    assert store.get(STATE_PREFIX + login_state)["redirect_to"] == f"{SITE}/account"
    test_session = store.get(STATE_PREFIX + test_state)
    assert test_session["is_test"] is True
    assert test_session["initiator"] == "admin-1"


# =================================================================
# Callback
# =================================================================


@pytest.mark.asyncio
async def test_callback_logs_in_new_user(container, users):
    """Test a full login creates the user and calls the login capability."""
    state = query_of(container.flow.initiate().url)["state"]
    ctx = browser()

    result = await container.flow.handle_callback(ctx, "code-1", state)

    assert isinstance(result, LoggedIn)
    assert result.identity.username == "a"
    assert result.identity.display_name == "Jane Doe"
    assert result.identity.role == "subscriber"
    assert result.redirect_to == f"{SITE}/admin"
    assert ctx.logged_in == [result.identity]
    assert len(users.all()) == 1


class ThreadRecordingRepository(MemoryUserRepository):
    """Remembers which threads wrote users."""

    def __init__(self):
        super().__init__()
        self.threads = []

    def add(self, identity):
        self.threads.append(threading.current_thread())
        return super().add(identity)


@pytest.mark.asyncio
async def test_callback_storage_runs_off_event_loop(store, fake_provider):
    """Test user writes during the callback happen outside the loop thread."""
    repository = ThreadRecordingRepository()
    container = build_container(
        make_settings(), store=store, users=repository, transport=fake_provider.transport
    )
    state = query_of(container.flow.initiate().url)["state"]

    result = await container.flow.handle_callback(browser(), "code-1", state)

    assert isinstance(result, LoggedIn)
    assert repository.threads
    assert threading.current_thread() not in repository.threads


@pytest.mark.asyncio
async def test_callback_state_is_single_use(container):
    """Test a replayed state is rejected after the first callback."""
    state = query_of(container.flow.initiate().url)["state"]

    first = await container.flow.handle_callback(browser(), "code-1", state)
    second = await container.flow.handle_callback(browser(), "code-1", state)

    assert isinstance(first, LoggedIn)
    assert isinstance(second, Failure)
    assert second.code == "invalid_state"
    assert second.message == "Invalid state parameter."


@pytest.mark.asyncio
async def test_callback_state_expires(container, clock):
    """Test states older than the TTL are rejected."""
    state = query_of(container.flow.initiate().url)["state"]
    clock.advance(601)

    result = await container.flow.handle_callback(browser(), "code-1", state)

    assert isinstance(result, Failure)
    assert result.code == "invalid_state"


@pytest.mark.asyncio
async def test_callback_without_code(container, fake_provider):
    """Test a missing code fails before any provider call."""
    state = query_of(container.flow.initiate().url)["state"]

    result = await container.flow.handle_callback(browser(), "", state)

    assert isinstance(result, Failure)
    assert result.message == "No authorization code received."
    assert fake_provider.requests == []


@pytest.mark.asyncio
async def test_callback_without_access_token(store, users):
    """Test token responses lacking an access token."""
    provider = FakeProvider(token_body={"token_type": "Bearer"})
    container = build_container(make_settings(), store=store, users=users, transport=provider.transport)
    state = query_of(container.flow.initiate().url)["state"]

    result = await container.flow.handle_callback(browser(), "code-1", state)

    assert isinstance(result, Failure)
    assert result.code == "no_access_token"
    assert users.all() == []


@pytest.mark.asyncio
async def test_callback_token_error(store, users):
    """Test provider token errors become a Failure."""
    provider = FakeProvider(token_status=400, token_body={"error": "invalid_grant"})
    container = build_container(make_settings(), store=store, users=users, transport=provider.transport)
    state = query_of(container.flow.initiate().url)["state"]

    result = await container.flow.handle_callback(browser(), "code-1", state)

    assert isinstance(result, Failure)
    assert result.message == "Token error: invalid_grant"


@pytest.mark.asyncio
async def test_callback_role_not_mapped(store, users, fake_provider):
    """Test a denied role yields a Failure and no login."""
    mapping = MappingSettings(
        enable_role_mapping=True,
        role_mapping_attribute="roles",
        role_mapping_rules=[{"claim_value": "admin", "role": "administrator"}],
        deny_unmapped_roles=True,
    )
    container = build_container(
        make_settings(mapping=mapping), store=store, users=users, transport=fake_provider.transport
    )
    state = query_of(container.flow.initiate().url)["state"]
    ctx = browser()

    result = await container.flow.handle_callback(ctx, "code-1", state)

    assert isinstance(result, Failure)
    assert result.code == "role_not_mapped"
    assert ctx.logged_in == []


@pytest.mark.asyncio
async def test_callback_without_state_checking(store, users, fake_provider):
    """Test providers configured without state skip the state check."""
    settings = make_settings(make_provider_settings(send_state=False))
    container = build_container(settings, store=store, users=users, transport=fake_provider.transport)

    assert "state" not in query_of(container.flow.initiate().url)
    result = await container.flow.handle_callback(browser(), "code-1", "")

    assert isinstance(result, LoggedIn)


# =================================================================
# Test logins
# =================================================================


@pytest.mark.asyncio
async def test_test_login_stashes_claims_once(container, users):
    """Test mode returns claims to the admin and logs nobody in."""
    state = query_of(container.flow.start_request(admin(test="1")).url)["state"]
    ctx = browser()

    result = await container.flow.handle_callback(ctx, "code-1", state)

    assert isinstance(result, TestCompleted)
    assert result.redirect_to == f"{SITE}/admin/sso-settings?test_complete=1"
    assert result.claims["sub"] == "abc123"
    assert ctx.logged_in == []
    assert users.all() == []

    assert container.flow.pop_test_claims(admin())["email"] == "a@b.com"
    assert container.flow.pop_test_claims(admin()) is None
    assert container.flow.available_claims()["sub"] == "abc123"


@pytest.mark.asyncio
async def test_test_claims_expire(container, clock):
    """Test stashed test claims expire while available claims remain."""
    state = query_of(container.flow.start_request(admin(test="1")).url)["state"]
    await container.flow.handle_callback(browser(), "code-1", state)

    clock.advance(61)

    assert container.flow.pop_test_claims(admin()) is None
    assert container.store.get(AVAILABLE_CLAIMS_KEY) is not None


def test_pop_test_claims_needs_user(container):
    """Test anonymous callers never see test claims."""
    assert container.flow.pop_test_claims(browser()) is None


# =================================================================
# Callback requests and login errors
# =================================================================


@pytest.mark.asyncio
async def test_callback_request_provider_error(container):
    """Test provider errors are stored for the login page."""
    ctx = browser(error="access_denied", error_description="User cancelled")

    redirect = await container.flow.handle_callback_request(ctx)

    assert redirect.url == f"{SITE}/login"
    assert container.flow.pop_login_error(ctx) == "User cancelled"
    assert container.flow.pop_login_error(ctx) is None


@pytest.mark.asyncio
async def test_callback_request_failure_message(container):
    """Test failures are stored under the caller fingerprint."""
    ctx = browser(code="code-1", state="forged")

    redirect = await container.flow.handle_callback_request(ctx)

    assert redirect.url == f"{SITE}/login"
    other = RequestContext(fingerprint=caller_fingerprint("10.0.0.2", "pytest"))
    assert container.flow.pop_login_error(other) is None
    assert container.flow.pop_login_error(ctx) == "Invalid state parameter."


@pytest.mark.asyncio
async def test_callback_request_success_redirects(container):
    """Test a successful callback redirects to the stored target."""
    state = query_of(container.flow.start_request(browser(redirect_to="/account")).url)["state"]

    redirect = await container.flow.handle_callback_request(browser(code="code-1", state=state))

    assert redirect == Redirect(f"{SITE}/account")


def test_login_error_expires(container, clock):
    """Test login errors live for a minute."""
    ctx = browser()
    container.flow.set_login_error(ctx, "boom")
    clock.advance(61)
    assert container.flow.pop_login_error(ctx) is None


@pytest.mark.parametrize(
    "target, expected",
    [
        ("", f"{SITE}/admin"),
        ("/account", f"{SITE}/account"),
        (f"{SITE}/shop?x=1", f"{SITE}/shop?x=1"),
        ("https://evil.example.com/", f"{SITE}/admin"),
        ("//evil.example.com/", f"{SITE}/admin"),
        ("relative/path", f"{SITE}/admin"),
        ("http://site.example.com/", f"{SITE}/admin"),
    ],
)
def test_safe_redirect(container, target, expected):
    """Test redirects stay on this site."""
    assert container.flow.safe_redirect(target) == expected
