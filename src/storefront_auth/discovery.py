"""Identity provider endpoint discovery.

Endpoints are resolved through three tiers, first success wins:

1. explicit override from :class:`AuthConfig` (no network call)
2. the provider's OpenID discovery document
3. endpoints constructed from the shop id

A fetched discovery document is kept in a :class:`DiscoveryCache` with a TTL;
constructed endpoints are never cached.
Concurrent cache misses for the same key share one load.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from storefront_auth.config import AuthConfig
from storefront_auth.errors import DiscoveryUnavailableError
from storefront_auth.models import ProviderEndpoints
from storefront_auth.singleflight import SingleFlight

logger = logging.getLogger(__name__)

OPENID_CONFIGURATION_PATH = "/.well-known/openid-configuration"


class DiscoveryCache:
    """In-memory TTL cache with single-flight loading.

    Injected wherever discovery results are needed instead of living at
    module level, so each application (and each test) owns its own cache.
    """

    def __init__(self, ttl: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._flight = SingleFlight()

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock() + self.ttl, value)

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key``, loading it at most once concurrently."""
        cached = self.get(key)
        if cached is not None:
            return cached

        async def load_and_store() -> Any:
            value = await loader()
            self.set(key, value)
            return value

        return await self._flight.do(key, load_and_store)


class EndpointResolver:
    """Resolves authorize, token and logout endpoints for the configured provider."""

    def __init__(self, config: AuthConfig, http_client: httpx.AsyncClient, cache: DiscoveryCache):
        self.config = config
        self._client = http_client
        self._cache = cache

    @property
    def cache_key(self) -> str:
        return f"endpoints:{self.config.shop_domain}"

    @property
    def discovery_url(self) -> str:
        return f"https://{self.config.shop_domain}{OPENID_CONFIGURATION_PATH}"

    async def resolve(self) -> ProviderEndpoints:
        """Resolve provider endpoints.

        Only a fetched discovery document is cached. Constructed endpoints
        are a stopgap, so the next call tries discovery again.

        Raises:
            DiscoveryUnavailableError: If no tier produced endpoints
        """
        explicit = self.explicit_endpoints()
        if explicit is not None:
            return explicit
        try:
            return await self._cache.get_or_load(self.cache_key, self._discover)
        except DiscoveryUnavailableError:
            endpoints = self.constructed_endpoints()
            if endpoints is None:
                raise DiscoveryUnavailableError(
                    f"Could not resolve identity provider endpoints for {self.config.shop_domain}: "
                    "discovery failed and no shop id is configured"
                )
            logger.info("Using endpoints constructed from the shop id")
            return endpoints

    def explicit_endpoints(self) -> Optional[ProviderEndpoints]:
        if not self.config.has_explicit_endpoints:
            return None
        return ProviderEndpoints(
            authorization_endpoint=self.config.authorize_endpoint,
            token_endpoint=self.config.token_endpoint,
            logout_endpoint=self.config.logout_endpoint,
            issuer=f"https://{self.config.shop_domain}",
            source="explicit",
        )

    async def _discover(self) -> ProviderEndpoints:
        endpoints = await self.fetch_discovery_document()
        if endpoints is None:
            raise DiscoveryUnavailableError(f"OpenID discovery failed for {self.config.shop_domain}")
        logger.info("Resolved identity provider endpoints from discovery")
        return endpoints

    async def fetch_discovery_document(self) -> Optional[ProviderEndpoints]:
        """Fetch the OpenID discovery document; None on any failure."""
        try:
            response = await self._client.get(
                self.discovery_url,
                headers={"Accept": "application/json"},
                timeout=self.config.http_timeout,
            )
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"OpenID discovery failed for {self.discovery_url}: {e!r}")
            return None
        except ValueError:
            logger.warning(f"OpenID discovery returned a non-JSON body from {self.discovery_url}")
            return None

        if not isinstance(document, dict):
            logger.warning("OpenID discovery document is not a JSON object")
            return None

        values = {
            name: document.get(name)
            for name in ("authorization_endpoint", "token_endpoint", "end_session_endpoint")
        }
        missing = [
            name
            for name, value in values.items()
            if not isinstance(value, str) or not value.startswith(("https://", "http://"))
        ]
        if missing:
            logger.warning(f"OpenID discovery document is missing {', '.join(missing)}")
            return None

        return ProviderEndpoints(
            authorization_endpoint=values["authorization_endpoint"],
            token_endpoint=values["token_endpoint"],
            logout_endpoint=values["end_session_endpoint"],
            issuer=document.get("issuer"),
            source="discovery",
        )

    def constructed_endpoints(self) -> Optional[ProviderEndpoints]:
        shop_id = self.config.shop_id
        if not shop_id:
            return None
        base = f"https://{self.config.provider_host}/{shop_id}"
        return ProviderEndpoints(
            authorization_endpoint=f"{base}/auth/oauth/authorize",
            token_endpoint=f"{base}/auth/oauth/token",
            logout_endpoint=f"{base}/auth/logout",
            issuer=f"https://{self.config.shop_domain}",
            source="constructed",
        )
