"""Application factory and the ``storefront-auth`` entry point."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI

from storefront_auth import __version__
from storefront_auth.config import AuthConfig
from storefront_auth.discovery import DiscoveryCache
from storefront_auth.errors import ConfigurationError
from storefront_auth.routes import build_router
from storefront_auth.service import StorefrontAuth

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[AuthConfig] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    discovery_cache: Optional[DiscoveryCache] = None,
) -> FastAPI:
    """Create a FastAPI application serving the ``/auth`` routes.

    Args:
        config: Settings; read from ``STOREFRONT_*`` variables when omitted
        http_client: Client for provider calls; one is created when omitted
        discovery_cache: Cache for provider discovery results

    Raises:
        ConfigurationError: If the configuration cannot be loaded
    """
    config = config or AuthConfig.from_env()
    auth = StorefrontAuth(config, http_client=http_client, discovery_cache=discovery_cache)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await auth.aclose()

    app = FastAPI(
        title="Storefront Auth",
        description="Customer sign-in for the storefront via OAuth2 Authorization Code + PKCE",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.storefront_auth = auth
    app.include_router(build_router())
    return app


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = create_app()
    except ConfigurationError as e:
        logger.error(str(e))
        raise SystemExit(1)

    uvicorn.run(
        app,
        host=os.environ.get("STOREFRONT_HOST", "127.0.0.1"),
        port=int(os.environ.get("STOREFRONT_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
