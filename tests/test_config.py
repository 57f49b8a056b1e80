"""Tests for AuthConfig."""

import pytest
from pydantic import ValidationError

from storefront_auth.config import DEFAULT_SCOPES, AuthConfig
from storefront_auth.errors import ConfigurationError

from tests.mocks.storefront_auth_mocks import COOKIE_SECRET, make_config

BASE_ENV = {
    "STOREFRONT_CLIENT_ID": "env-client",
    "STOREFRONT_SHOP_DOMAIN": "shop.example.com",
    "STOREFRONT_COOKIE_SECRET": COOKIE_SECRET,
}


class TestAuthConfig:
    """Test defaults and validation."""

    def test_defaults(self):
        config = make_config()

        assert config.scopes == DEFAULT_SCOPES
        assert config.redirect_uri == "https://store.example.com/auth/callback"
        assert config.logout_redirect_uri == "https://store.example.com"
        assert config.oauth_state_max_age == 600
        assert config.session_max_age == 30 * 24 * 3600
        assert config.refresh_leeway_seconds == 300
        assert config.http_timeout == 10.0
        assert config.cookie_secure is True
        assert not config.is_confidential_client

    def test_site_url_trailing_slash(self):
        config = make_config(site_url="https://store.example.com/")

        assert config.site_url == "https://store.example.com"
        assert config.redirect_uri == "https://store.example.com/auth/callback"

    def test_explicit_redirect_uri(self):
        config = make_config(redirect_uri="https://store.example.com/oauth/return")

        assert config.redirect_uri == "https://store.example.com/oauth/return"

    def test_shop_domain_normalized(self):
        assert make_config(shop_domain="https://shop.example.com/").shop_domain == "shop.example.com"

    def test_scopes_from_string(self):
        assert make_config(scopes="openid, email").scopes == ["openid", "email"]

    def test_short_cookie_secret_rejected(self):
        with pytest.raises(ValidationError):
            make_config(cookie_secret="too-short")

    def test_relative_endpoint_rejected(self):
        with pytest.raises(ValidationError):
            make_config(token_endpoint="/oauth/token")

    def test_login_path_must_be_local(self):
        with pytest.raises(ValidationError):
            make_config(login_path="//evil.example/login")

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            make_config(http_timeout=0)

    def test_frozen(self):
        config = make_config()

        with pytest.raises(ValidationError):
            config.client_id = "changed"

    def test_explicit_endpoints_need_all_three(self):
        partial = make_config(authorize_endpoint="https://a.example/authorize")
        full = make_config(
            authorize_endpoint="https://a.example/authorize",
            token_endpoint="https://a.example/token",
            logout_endpoint="https://a.example/logout",
        )

        assert not partial.has_explicit_endpoints
        assert full.has_explicit_endpoints

    def test_account_domain(self):
        assert make_config().account_domain == "shop.example.com"
        assert (
            make_config(authorize_endpoint="https://account.example.com/authorize").account_domain
            == "account.example.com"
        )

    def test_summary_excludes_secrets(self):
        summary = make_config(client_secret="s3cret").get_environment_summary()

        assert "s3cret" not in repr(summary)
        assert COOKIE_SECRET not in repr(summary)
        assert summary["confidential_client"] is True


class TestConfigFromEnv:
    """Test loading from STOREFRONT_* variables."""

    def test_minimal_environment(self):
        config = AuthConfig.from_env(BASE_ENV)

        assert config.client_id == "env-client"
        assert config.shop_domain == "shop.example.com"

    def test_full_environment(self):
        env = {
            **BASE_ENV,
            "STOREFRONT_CLIENT_SECRET": "s3cret",
            "STOREFRONT_SHOP_ID": "987",
            "STOREFRONT_SITE_URL": "https://store.example.com",
            "STOREFRONT_SCOPES": "openid email",
            "STOREFRONT_COOKIE_SECURE": "false",
            "STOREFRONT_ACCEPT_LEGACY_STATE": "0",
            "STOREFRONT_HTTP_TIMEOUT": "5",
            "STOREFRONT_DISCOVERY_TTL": "120",
        }

        config = AuthConfig.from_env(env)

        assert config.is_confidential_client
        assert config.shop_id == "987"
        assert config.scopes == ["openid", "email"]
        assert config.cookie_secure is False
        assert config.accept_legacy_state is False
        assert config.http_timeout == 5.0
        assert config.discovery_ttl == 120.0

    @pytest.mark.parametrize("missing", sorted(BASE_ENV))
    def test_missing_required_value(self, missing):
        env = {k: v for k, v in BASE_ENV.items() if k != missing}

        with pytest.raises(ConfigurationError, match=missing):
            AuthConfig.from_env(env)

    def test_blank_value_counts_as_missing(self):
        with pytest.raises(ConfigurationError):
            AuthConfig.from_env({**BASE_ENV, "STOREFRONT_CLIENT_ID": "  "})

    def test_invalid_value_wrapped(self):
        with pytest.raises(ConfigurationError, match="Invalid authentication settings"):
            AuthConfig.from_env({**BASE_ENV, "STOREFRONT_HTTP_TIMEOUT": "not-a-number"})
