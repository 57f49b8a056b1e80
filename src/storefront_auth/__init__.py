"""Storefront Auth - customer sign-in for a FastAPI storefront.

Storefront Auth signs customers in against the shop's identity provider with
the OAuth2 Authorization Code flow and PKCE, keeps the resulting tokens in
sealed HttpOnly cookies, refreshes them transparently and answers "who is
the current customer?" for downstream routes.

Key Components:
    - create_app: Application factory serving /auth/login, /auth/callback,
      /auth/logout and /auth/status
    - AuthConfig: Settings, usually loaded from STOREFRONT_* variables
    - current_session / require_customer: Dependencies for route handlers

Usage:
    ```python
    from fastapi import Depends
    from storefront_auth import CustomerIdentity, create_app, require_customer

    app = create_app()

    @app.get("/account")
    async def account(customer: CustomerIdentity = Depends(require_customer)):
        return {"email": customer.email}
    ```
"""

__version__ = "0.1.0"

from storefront_auth.app import create_app
from storefront_auth.config import AuthConfig
from storefront_auth.dependencies import current_session, get_storefront_auth, require_customer
from storefront_auth.discovery import DiscoveryCache, EndpointResolver
from storefront_auth.errors import (
    AuthError,
    ConfigurationError,
    CsrfMismatchError,
    DiscoveryUnavailableError,
    ExchangeFailedError,
    IdentityLookupError,
    InvalidStateError,
    MalformedStateError,
    MissingCodeError,
    ProviderError,
    RefreshFailedError,
    SessionExpiredError,
    UnsafeRedirectError,
)
from storefront_auth.models import CustomerIdentity, OAuthState, ProviderEndpoints, SessionResult, TokenPair
from storefront_auth.pkce import PKCECodePair, PKCEGenerator
from storefront_auth.service import StorefrontAuth
from storefront_auth.state import StateCodec

__all__ = [
    "create_app",
    "AuthConfig",
    "StorefrontAuth",
    "current_session",
    "get_storefront_auth",
    "require_customer",
    "DiscoveryCache",
    "EndpointResolver",
    "StateCodec",
    "PKCECodePair",
    "PKCEGenerator",
    "CustomerIdentity",
    "OAuthState",
    "ProviderEndpoints",
    "SessionResult",
    "TokenPair",
    "AuthError",
    "ConfigurationError",
    "CsrfMismatchError",
    "DiscoveryUnavailableError",
    "ExchangeFailedError",
    "IdentityLookupError",
    "InvalidStateError",
    "MalformedStateError",
    "MissingCodeError",
    "ProviderError",
    "RefreshFailedError",
    "SessionExpiredError",
    "UnsafeRedirectError",
]
