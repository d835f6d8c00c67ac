"""Application settings using Pydantic Settings."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_METADATA_CLAIM = "urn:zitadel:iam:user:metadata"

DisplayNameFormat = Literal[
    "firstname_lastname",
    "lastname_firstname",
    "firstname",
    "username",
    "email",
    "name_claim",
]


class RoleMappingRule(BaseModel):
    """Maps one claim value onto a local role."""

    claim_value: str = Field(description="Exact claim value to match")
    role: str = Field(description="Local role assigned on match")


class AttributeMapping(BaseModel):
    """Copies a claim onto a custom identity attribute."""

    local_field: str = Field(description="Attribute name on the local identity")
    claim_path: str = Field(description="Claim path (dot notation) or metadata key")


class ProviderSettings(BaseSettings):
    """Identity provider endpoints and client credentials."""

    model_config = SettingsConfigDict(
        env_prefix="PROVIDER__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    display_name: str = Field(default="", description="Provider name shown to users")
    discovery_url: str = Field(default="", description="OIDC discovery base URL")
    client_id: str = Field(default="", description="OAuth client ID")
    client_secret: str = Field(default="", description="OAuth client secret")
    scope: str = Field(
        default=f"openid profile email {DEFAULT_METADATA_CLAIM}",
        description="Space-separated scopes requested at the authorize endpoint",
    )

    authorize_endpoint: str = Field(default="", description="Authorization endpoint URL")
    token_endpoint: str = Field(default="", description="Token endpoint URL")
    userinfo_endpoint: str = Field(default="", description="UserInfo endpoint URL")
    end_session_endpoint: str = Field(
        default="", description="End-session endpoint URL (single logout)"
    )

    # Token request shape
    credentials_in_header: bool = Field(
        default=True, description="Send client credentials as HTTP Basic auth"
    )
    credentials_in_body: bool = Field(
        default=True, description="Send client_id/client_secret in the token request body"
    )
    send_scope_in_body: bool = Field(
        default=True, description="Send scope in the token request body"
    )
    send_state: bool = Field(default=True, description="Send and verify the state parameter")
    send_nonce: bool = Field(default=False, description="Send a nonce parameter")
    grant_type: str = Field(default="authorization_code", description="Token grant type")

    token_timeout: float = Field(
        default=30.0, description="Timeout for token and userinfo requests (seconds)"
    )
    discovery_timeout: float = Field(
        default=15.0, description="Timeout for discovery requests (seconds)"
    )

    @field_validator(
        "authorize_endpoint",
        "token_endpoint",
        "userinfo_endpoint",
        "end_session_endpoint",
        "discovery_url",
        "client_id",
        "scope",
    )
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class MappingSettings(BaseSettings):
    """Claim to local identity mapping."""

    model_config = SettingsConfigDict(
        env_prefix="MAPPING__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    attr_username: str = Field(
        default="preferred_username", description="Claim used as username"
    )
    attr_email: str = Field(default="email", description="Claim used as email")
    attr_first_name: str = Field(default="given_name", description="Claim used as first name")
    attr_last_name: str = Field(default="family_name", description="Claim used as last name")
    display_name_format: DisplayNameFormat = Field(
        default="firstname_lastname", description="How display names are built"
    )

    enable_role_mapping: bool = Field(default=False, description="Derive roles from claims")
    role_mapping_attribute: str = Field(
        default="",
        description="Semicolon-separated claim paths holding role values",
    )
    role_mapping_rules: list[RoleMappingRule] = Field(
        default_factory=list, description="Ordered rules, first match wins"
    )
    default_role: str = Field(default="subscriber", description="Role when nothing maps")
    keep_existing_roles: bool = Field(
        default=True, description="Never change roles of existing users"
    )
    deny_unmapped_roles: bool = Field(
        default=False, description="Reject logins whose claims map to no rule"
    )

    custom_attribute_mapping: list[AttributeMapping] = Field(
        default_factory=list, description="Custom attribute mappings"
    )
    metadata_claim: str = Field(
        default=DEFAULT_METADATA_CLAIM,
        description="Claim holding Base64-encoded provider metadata",
    )

    @field_validator("role_mapping_rules")
    @classmethod
    def drop_incomplete_rules(cls, rules: list[RoleMappingRule]) -> list[RoleMappingRule]:
        """Trim rules and drop those missing a claim value or role."""
        cleaned = []
        for rule in rules:
            claim_value, role = rule.claim_value.strip(), rule.role.strip()
            if claim_value and role:
                cleaned.append(RoleMappingRule(claim_value=claim_value, role=role))
        return cleaned

    @field_validator("custom_attribute_mapping")
    @classmethod
    def drop_incomplete_mappings(cls, mappings: list[AttributeMapping]) -> list[AttributeMapping]:
        """Trim mappings and drop those missing either side."""
        cleaned = []
        for mapping in mappings:
            local_field, claim_path = mapping.local_field.strip(), mapping.claim_path.strip()
            if local_field and claim_path:
                cleaned.append(AttributeMapping(local_field=local_field, claim_path=claim_path))
        return cleaned

    @field_validator("default_role")
    @classmethod
    def default_role_not_empty(cls, value: str) -> str:
        return value.strip() or "subscriber"


class StoreSettings(BaseSettings):
    """Ephemeral state store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORE__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: str = Field(default="memory", description="State store backend: memory | filesystem")
    path: str = Field(
        default="~/.oidc-login/state", description="Directory for the filesystem backend"
    )
    state_ttl: int = Field(default=600, description="Lifetime of a pending authorization (seconds)")
    test_claims_ttl: int = Field(default=60, description="Lifetime of stashed test claims")
    available_claims_ttl: int = Field(
        default=86400, description="Lifetime of cached claims used for mapping suggestions"
    )
    login_error_ttl: int = Field(default=60, description="Lifetime of login error messages")
    logout_marker_ttl: int = Field(default=60, description="Lifetime of single-logout markers")
    purge_interval: float = Field(
        default=0.0,
        description="Minimum seconds between expiry sweeps of the filesystem backend (0 = every write)",
    )


class SessionSettings(BaseSettings):
    """Signed session cookie marking a user authenticated."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret: str = Field(
        default="change-me-oidc-login-session-secret",
        description="HMAC secret for session tokens - CHANGE IN PRODUCTION",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    cookie_name: str = Field(default="oidc-login-session", description="Session cookie name")
    expire_minutes: int = Field(default=60 * 24, description="Session lifetime")
    secure_cookie: bool = Field(default=False, description="Mark the cookie Secure")


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OIDC_LOGIN_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Site
    site_url: str = Field(default="http://localhost:8000", description="Public base URL")
    callback_path: str = Field(default="/oauth/callback", description="OAuth redirect URI path")
    login_path: str = Field(default="/login", description="Local login page path")
    admin_path: str = Field(default="/admin", description="Default post-login destination")
    admin_settings_path: str = Field(
        default="/admin/sso-settings", description="Where test logins return to"
    )
    admin_roles: list[str] = Field(
        default_factory=lambda: ["administrator"],
        description="Roles allowed to run test logins and discovery",
    )

    # API
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    log_level: str = Field(default="INFO", description="Log level for the loguru sink")

    # User repository
    users_backend: str = Field(default="memory", description="User repository: memory | filesystem")
    users_path: str = Field(default="~/.oidc-login/users", description="Filesystem user directory")

    # Nested groups
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    mapping: MappingSettings = Field(default_factory=MappingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def url(self, path: str) -> str:
        """Absolute URL for a site path."""
        return f"{self.site_url}/{path.lstrip('/')}"

    @property
    def callback_url(self) -> str:
        """Fixed redirect URI registered with the provider."""
        return self.url(self.callback_path)

    @property
    def home_url(self) -> str:
        return self.url("/")

    @property
    def login_url(self) -> str:
        return self.url(self.login_path)

    @property
    def admin_url(self) -> str:
        return self.url(self.admin_path)

    @property
    def admin_settings_url(self) -> str:
        return self.url(self.admin_settings_path)


settings = Settings()
