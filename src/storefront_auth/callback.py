"""Completes a login when the provider redirects back to the site."""

import logging
from dataclasses import dataclass
from typing import Optional

from storefront_auth.config import AuthConfig
from storefront_auth.errors import (
    AuthError,
    ExchangeFailedError,
    MissingCodeError,
    ProviderError,
    SessionExpiredError,
)
from storefront_auth.provider import IdentityProviderClient
from storefront_auth.session_store import SessionStore
from storefront_auth.state import StateCodec
from storefront_auth.urls import append_query, site_url_for

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("storefront_auth.security")


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters the provider sends to the redirect URI."""
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class CallbackHandler:
    """Validates the callback, exchanges the code and establishes the session."""

    def __init__(self, config: AuthConfig, provider: IdentityProviderClient, codec: StateCodec):
        self.config = config
        self._provider = provider
        self._codec = codec

    async def handle(
        self,
        params: CallbackParams,
        store: SessionStore,
        client_host: Optional[str] = None,
    ) -> str:
        """Handle the callback and return the redirect location.

        Never raises for an expected failure: each one becomes a redirect to
        the login page carrying an ``error`` code. The pending login attempt
        is cleared on every path.
        """
        try:
            return await self._complete(params, store)
        except AuthError as e:
            return self._failure_location(e, client_host)
        finally:
            store.clear_oauth_state()

    async def _complete(self, params: CallbackParams, store: SessionStore) -> str:
        if params.error:
            raise ProviderError(params.error, params.error_description)
        if not params.code:
            raise MissingCodeError("Callback carried no authorization code")

        pending = store.load_oauth_state()
        if pending is None:
            raise SessionExpiredError("No pending login attempt for this browser")

        decoded = self._codec.decode(params.state)
        return_to = self._codec.validate(decoded, pending.csrf_nonce)

        tokens = await self._provider.exchange_code(params.code, pending.code_verifier)
        store.store(tokens)

        target = return_to or self.config.default_return_path
        logger.info("Login completed")
        return site_url_for(self.config.site_url, target)

    def _failure_location(self, error: AuthError, client_host: Optional[str]) -> str:
        if error.security_event:
            security_logger.warning(
                f"Rejected login callback from {client_host or 'unknown'}: "
                f"{type(error).__name__}: {error}"
            )
        else:
            logger.warning(f"Login callback failed: {error.error_code}: {error}")

        query = {"error": error.error_code}
        if isinstance(error, ExchangeFailedError):
            query["error_description"] = error.error_description
        return append_query(site_url_for(self.config.site_url, self.config.login_path), query)
