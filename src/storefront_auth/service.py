"""Application-level wiring of the authentication components."""

import logging
from typing import Optional

import httpx
from fastapi import Request

from storefront_auth.authorization import AuthorizationRequestBuilder
from storefront_auth.callback import CallbackHandler
from storefront_auth.config import AuthConfig
from storefront_auth.cookies import CookieSealer
from storefront_auth.discovery import DiscoveryCache, EndpointResolver
from storefront_auth.logout import LogoutHandler
from storefront_auth.provider import IdentityProviderClient
from storefront_auth.resolver import SessionResolver
from storefront_auth.session_store import SessionStore
from storefront_auth.singleflight import SingleFlight
from storefront_auth.state import StateCodec

logger = logging.getLogger(__name__)

_STORE_ATTR = "storefront_auth_store"


class StorefrontAuth:
    """Holds the process-wide pieces: config, HTTP client, caches.

    One instance per application. Request-scoped pieces (the session store
    and the session resolution) hang off ``request.state``.

    Args:
        config: Authentication settings
        http_client: Shared client; created and owned here when omitted
        discovery_cache: Cache for provider discovery results
    """

    def __init__(
        self,
        config: AuthConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        discovery_cache: Optional[DiscoveryCache] = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=config.http_timeout)
        self.discovery_cache = discovery_cache or DiscoveryCache(ttl=config.discovery_ttl)
        self.refresh_flight = SingleFlight()

        self.sealer = CookieSealer(config.cookie_secret)
        self.codec = StateCodec(config.cookie_secret, accept_legacy=config.accept_legacy_state)
        self.endpoints = EndpointResolver(config, self.http_client, self.discovery_cache)
        self.provider = IdentityProviderClient(config, self.http_client, self.endpoints, self.discovery_cache)

        self.authorization = AuthorizationRequestBuilder(config, self.endpoints, self.codec)
        self.callback = CallbackHandler(config, self.provider, self.codec)
        self.logout = LogoutHandler(config, self.endpoints)
        self.resolver = SessionResolver(self)

    def session_store(self, request: Request) -> SessionStore:
        """Return the session store of ``request``, creating it on first use."""
        store = getattr(request.state, _STORE_ATTR, None)
        if store is None:
            store = SessionStore(
                request.cookies, self.config, self.sealer, self.provider, self.refresh_flight
            )
            setattr(request.state, _STORE_ATTR, store)
        return store

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
