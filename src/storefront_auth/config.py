"""Process-wide configuration for the storefront authentication flow.

``AuthConfig`` is loaded once at startup, usually through
:meth:`AuthConfig.from_env`, and is immutable for the life of the process.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from storefront_auth.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "STOREFRONT_"

DEFAULT_SCOPES = ["openid", "email", "customer-account-api:full"]

_TRUE_VALUES = {"1", "true", "yes", "on"}


class AuthConfig(BaseModel):
    """Identity provider client settings and session cookie policy."""

    model_config = {"frozen": True}

    # Identity provider client
    client_id: str = Field(min_length=1)
    client_secret: Optional[str] = None
    shop_domain: str = Field(min_length=1)
    shop_id: Optional[str] = None
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    # Site and redirect targets
    site_url: str = "http://localhost:8000"
    redirect_uri: str
    logout_redirect_uri: str

    # Explicit endpoint overrides, used only when all three are present
    authorize_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    logout_endpoint: Optional[str] = None
    provider_host: str = "shopify.com"

    # Customer Account API
    api_version: str = "2026-01"
    user_agent: str = "Storefront-Auth/1.0 (FastAPI)"

    # Cookie policy
    cookie_secret: str = Field(min_length=32)
    cookie_secure: bool = True
    cookie_domain: Optional[str] = None
    oauth_state_max_age: int = Field(default=600, gt=0)  # 10 minutes
    session_max_age: int = Field(default=60 * 60 * 24 * 30, gt=0)  # 30 days

    # Token lifecycle and network
    refresh_leeway_seconds: int = Field(default=300, ge=0)
    discovery_ttl: float = Field(default=3600.0, gt=0)
    http_timeout: float = Field(default=10.0, gt=0, le=60)

    # Routing
    login_path: str = "/auth/login"
    default_return_path: str = "/account"
    accept_legacy_state: bool = True

    @model_validator(mode="before")
    @classmethod
    def fill_redirect_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        site_url = str(data.get("site_url") or "http://localhost:8000").rstrip("/")
        data["site_url"] = site_url
        data.setdefault("redirect_uri", None)
        data.setdefault("logout_redirect_uri", None)
        if not data["redirect_uri"]:
            data["redirect_uri"] = f"{site_url}/auth/callback"
        if not data["logout_redirect_uri"]:
            data["logout_redirect_uri"] = site_url
        return data

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v):
        """Accept scopes as a space or comma separated string."""
        if isinstance(v, str):
            return [scope for scope in v.replace(",", " ").split() if scope]
        return v

    @field_validator("shop_domain")
    @classmethod
    def strip_shop_domain(cls, v: str) -> str:
        parsed = urlparse(v if "://" in v else f"https://{v}")
        if not parsed.hostname:
            raise ValueError("shop_domain must be a host name")
        return parsed.netloc

    @field_validator("authorize_endpoint", "token_endpoint", "logout_endpoint", "site_url")
    @classmethod
    def validate_absolute_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"{v!r} is not an absolute http(s) URL")
        return v

    @field_validator("login_path", "default_return_path")
    @classmethod
    def validate_local_path(cls, v: str) -> str:
        if not v.startswith("/") or v.startswith("//"):
            raise ValueError("Paths must be site-relative and start with '/'")
        return v

    @property
    def has_explicit_endpoints(self) -> bool:
        return bool(self.authorize_endpoint and self.token_endpoint and self.logout_endpoint)

    @property
    def account_domain(self) -> str:
        """Host serving the Customer Account API.

        Stores with a custom account domain configure an explicit authorize
        URL on that domain; everything else lives on the shop domain.
        """
        if self.authorize_endpoint:
            host = urlparse(self.authorize_endpoint).netloc
            if host:
                return host
        return self.shop_domain

    @property
    def is_confidential_client(self) -> bool:
        return bool(self.client_secret)

    def get_environment_summary(self) -> Dict[str, Any]:
        """Get a summary of the configuration, excluding secrets."""
        return {
            "shop_domain": self.shop_domain,
            "account_domain": self.account_domain,
            "site_url": self.site_url,
            "redirect_uri": self.redirect_uri,
            "scopes": self.scopes,
            "explicit_endpoints": self.has_explicit_endpoints,
            "confidential_client": self.is_confidential_client,
            "cookie_secure": self.cookie_secure,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """Build the configuration from ``STOREFRONT_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Validated configuration

        Raises:
            ConfigurationError: If a required value is missing or invalid
        """
        env = os.environ if environ is None else environ

        def read(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            if value is None or not value.strip():
                return None
            return value.strip()

        values: Dict[str, Any] = {
            "client_id": read("CLIENT_ID"),
            "client_secret": read("CLIENT_SECRET"),
            "shop_domain": read("SHOP_DOMAIN"),
            "shop_id": read("SHOP_ID"),
            "site_url": read("SITE_URL"),
            "redirect_uri": read("REDIRECT_URI"),
            "logout_redirect_uri": read("LOGOUT_REDIRECT_URI"),
            "scopes": read("SCOPES"),
            "authorize_endpoint": read("AUTHORIZE_URL"),
            "token_endpoint": read("TOKEN_URL"),
            "logout_endpoint": read("LOGOUT_URL"),
            "cookie_secret": read("COOKIE_SECRET"),
            "cookie_domain": read("COOKIE_DOMAIN"),
            "api_version": read("API_VERSION"),
            "discovery_ttl": read("DISCOVERY_TTL"),
            "http_timeout": read("HTTP_TIMEOUT"),
        }
        for flag, field_name in (
            ("COOKIE_SECURE", "cookie_secure"),
            ("ACCEPT_LEGACY_STATE", "accept_legacy_state"),
        ):
            raw = read(flag)
            if raw is not None:
                values[field_name] = raw.lower() in _TRUE_VALUES

        missing = [
            ENV_PREFIX + name
            for name, key in (
                ("CLIENT_ID", "client_id"),
                ("SHOP_DOMAIN", "shop_domain"),
                ("COOKIE_SECRET", "cookie_secret"),
            )
            if values[key] is None
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        try:
            config = cls(**{k: v for k, v in values.items() if v is not None})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid authentication settings: {e}") from e

        logger.info(f"Loaded authentication config: {config.get_environment_summary()}")
        return config
