"""Ends the local session and the provider session."""

import logging
from typing import Optional

from storefront_auth.config import AuthConfig
from storefront_auth.discovery import EndpointResolver
from storefront_auth.errors import DiscoveryUnavailableError
from storefront_auth.session_store import SessionStore
from storefront_auth.urls import append_query, is_safe_return_path, site_url_for

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("storefront_auth.security")


class LogoutHandler:
    def __init__(self, config: AuthConfig, endpoints: EndpointResolver):
        self.config = config
        self._endpoints = endpoints

    async def handle(self, store: SessionStore, return_to: Optional[str] = None) -> str:
        """Clear the local session and return the logout redirect location.

        The local session is cleared before the provider is involved, so the
        user is signed out of the site even if the provider is unreachable.
        An unsafe ``return_to`` is ignored rather than rejected.
        """
        id_token = store.read_id_token()
        store.clear()
        store.clear_oauth_state()

        if return_to is not None and not is_safe_return_path(return_to):
            security_logger.warning(f"Ignoring unsafe logout returnTo {return_to!r}")
            return_to = None

        if return_to:
            post_logout = site_url_for(self.config.site_url, return_to)
        else:
            post_logout = self.config.logout_redirect_uri

        try:
            endpoints = await self._endpoints.resolve()
        except DiscoveryUnavailableError as e:
            logger.warning(f"Provider logout skipped, endpoints unavailable: {e}")
            return site_url_for(self.config.site_url, return_to or "/")

        logger.info("Signed out locally, redirecting to provider logout")
        return append_query(
            endpoints.logout_endpoint,
            {"id_token_hint": id_token, "post_logout_redirect_uri": post_logout},
        )
