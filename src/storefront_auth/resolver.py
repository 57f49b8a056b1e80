"""Answers "who is the current customer?" for a request."""

import functools
import logging
from typing import TYPE_CHECKING

from fastapi import Request

from storefront_auth.errors import IdentityLookupError, RefreshFailedError
from storefront_auth.models import SessionResult
from storefront_auth.singleflight import SingleFlight

if TYPE_CHECKING:
    from storefront_auth.service import StorefrontAuth

logger = logging.getLogger(__name__)

_RESULT_ATTR = "storefront_auth_session"
_FLIGHT_ATTR = "storefront_auth_session_flight"


class SessionResolver:
    """Resolves the session of a request at most once.

    The result is stored on ``request.state``; concurrent calls in the same
    request share one in-flight resolution, which is cancelled together with
    its last caller. Never raises for auth failures: those resolve to an
    anonymous result.
    """

    def __init__(self, auth: "StorefrontAuth"):
        self._auth = auth

    async def resolve(self, request: Request) -> SessionResult:
        result = getattr(request.state, _RESULT_ATTR, None)
        if result is not None:
            return result
        flight = getattr(request.state, _FLIGHT_ATTR, None)
        if flight is None:
            flight = SingleFlight()
            setattr(request.state, _FLIGHT_ATTR, flight)
        return await flight.do("session", functools.partial(self._resolve_and_remember, request))

    async def _resolve_and_remember(self, request: Request) -> SessionResult:
        result = await self._resolve(request)
        setattr(request.state, _RESULT_ATTR, result)
        return result

    async def _resolve(self, request: Request) -> SessionResult:
        store = self._auth.session_store(request)

        tokens = store.read()
        if tokens is None:
            if store.has_session_cookies():
                # Unreadable leftovers from an older or tampered session
                store.clear()
            return SessionResult.anonymous()

        try:
            tokens = await store.ensure_fresh(tokens)
        except RefreshFailedError:
            return SessionResult.anonymous()

        try:
            customer = await self._auth.provider.fetch_customer(tokens.access_token)
        except IdentityLookupError as e:
            if e.auth_rejected:
                logger.info(f"Access token rejected, clearing session: {e}")
                store.clear()
            else:
                logger.warning(f"Customer identity unavailable: {e}")
            return SessionResult.anonymous()

        return SessionResult.authenticated(customer)
