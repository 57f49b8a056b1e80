"""Builds the redirect that starts an Authorization Code + PKCE login."""

import logging
from typing import Optional

from storefront_auth.config import AuthConfig
from storefront_auth.discovery import EndpointResolver
from storefront_auth.errors import UnsafeRedirectError
from storefront_auth.models import OAuthState
from storefront_auth.pkce import CODE_CHALLENGE_METHOD, PKCEGenerator, StateGenerator
from storefront_auth.session_store import SessionStore
from storefront_auth.state import StateCodec
from storefront_auth.urls import append_query, is_safe_return_path

logger = logging.getLogger(__name__)


class AuthorizationRequestBuilder:
    def __init__(self, config: AuthConfig, endpoints: EndpointResolver, codec: StateCodec):
        self.config = config
        self._endpoints = endpoints
        self._codec = codec

    async def build(self, store: SessionStore, return_to: Optional[str] = None) -> str:
        """Start a login attempt and return the provider authorize URL.

        The verifier, CSRF nonce and OpenID nonce are saved through ``store``
        before the URL is produced; if saving fails no URL is returned.

        Args:
            store: Session store of the current request
            return_to: Site-relative path to land on after login

        Returns:
            Absolute authorize URL to redirect the browser to

        Raises:
            UnsafeRedirectError: If ``return_to`` is not a same-origin path
            DiscoveryUnavailableError: If provider endpoints cannot be resolved
        """
        if return_to is not None and not is_safe_return_path(return_to):
            raise UnsafeRedirectError(f"Rejected login returnTo {return_to!r}")

        endpoints = await self._endpoints.resolve()

        pkce_pair = PKCEGenerator.generate_pair()
        state = OAuthState(
            code_verifier=pkce_pair.verifier,
            csrf_nonce=StateGenerator.generate_csrf_nonce(),
            nonce=StateGenerator.generate_nonce(),
        )
        encoded_state = self._codec.encode(state.csrf_nonce, return_to)

        store.save_oauth_state(state)

        url = append_query(
            endpoints.authorization_endpoint,
            {
                "response_type": "code",
                "client_id": self.config.client_id,
                "redirect_uri": self.config.redirect_uri,
                "scope": " ".join(self.config.scopes),
                "code_challenge": pkce_pair.challenge,
                "code_challenge_method": CODE_CHALLENGE_METHOD,
                "state": encoded_state,
                "nonce": state.nonce,
            },
        )
        logger.info(f"Starting login via {endpoints.source} endpoints")
        return url
