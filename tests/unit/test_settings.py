"""Test settings loading and sanitizing."""

from oidc_login.settings import MappingSettings, RoleMappingRule, Settings


def test_site_urls():
    """Test derived site URLs."""
    settings = Settings(site_url="https://site.example.com/")

    assert settings.callback_url == "https://site.example.com/oauth/callback"
    assert settings.home_url == "https://site.example.com/"
    assert settings.login_url == "https://site.example.com/login"
    assert settings.admin_settings_url == "https://site.example.com/admin/sso-settings"


def test_incomplete_rules_and_mappings_dropped():
    """Test rules and attribute mappings are trimmed and pruned."""
    mapping = MappingSettings(
        role_mapping_rules=[
            {"claim_value": " admin ", "role": " administrator "},
            {"claim_value": "staff", "role": ""},
            {"claim_value": "  ", "role": "editor"},
        ],
        custom_attribute_mapping=[
            {"local_field": "phone", "claim_path": " phone "},
            {"local_field": "", "claim_path": "city"},
        ],
        default_role="  ",
    )

    assert mapping.role_mapping_rules == [RoleMappingRule(claim_value="admin", role="administrator")]
    assert [m.claim_path for m in mapping.custom_attribute_mapping] == ["phone"]
    assert mapping.default_role == "subscriber"


def test_nested_environment(monkeypatch):
    """Test nested groups load from OIDC_LOGIN_* variables."""
    monkeypatch.setenv("OIDC_LOGIN_SITE_URL", "https://env.example.com")
    monkeypatch.setenv("OIDC_LOGIN_PROVIDER__CLIENT_ID", " env-client ")
    monkeypatch.setenv("OIDC_LOGIN_MAPPING__DENY_UNMAPPED_ROLES", "true")
    monkeypatch.setenv(
        "OIDC_LOGIN_MAPPING__ROLE_MAPPING_RULES",
        '[{"claim_value": "admin", "role": "administrator"}]',
    )

    settings = Settings()

    assert settings.site_url == "https://env.example.com"
    assert settings.provider.client_id == "env-client"
    assert settings.mapping.deny_unmapped_roles is True
    assert settings.mapping.role_mapping_rules[0].role == "administrator"
