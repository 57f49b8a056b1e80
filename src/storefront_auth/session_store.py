"""Cookie-backed storage for the session tokens and the pending login attempt."""

import hashlib
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Set

from starlette.responses import Response

from storefront_auth import cookies as c
from storefront_auth.config import AuthConfig
from storefront_auth.cookies import CookieSealer
from storefront_auth.errors import AuthError, RefreshFailedError
from storefront_auth.models import OAuthState, TokenPair
from storefront_auth.provider import IdentityProviderClient
from storefront_auth.singleflight import SingleFlight

logger = logging.getLogger(__name__)


class SessionStore:
    """Per-request view of the auth cookies.

    Writes are queued rather than applied to a response directly. Reads see
    queued writes, so a value stored earlier in the request is visible to
    later reads. :meth:`commit` applies the queued changes to the outgoing
    response.

    Args:
        cookies: The incoming request's cookies
        config: Cookie policy and token lifecycle settings
        sealer: Seals and unseals cookie values
        provider: Used to refresh expired access tokens
        refresh_flight: Shared across requests so concurrent refreshes of the
            same refresh token reach the provider once
    """

    def __init__(
        self,
        cookies: Mapping[str, str],
        config: AuthConfig,
        sealer: CookieSealer,
        provider: IdentityProviderClient,
        refresh_flight: SingleFlight,
    ):
        self.config = config
        self._incoming = dict(cookies)
        self._sealer = sealer
        self._provider = provider
        self._refresh_flight = refresh_flight
        # name -> sealed value, or None for a deletion
        self._overlay: Dict[str, Optional[str]] = {}
        self._max_ages: Dict[str, int] = {}
        self._unsent: Set[str] = set()

    # Raw cookie access

    def _raw(self, name: str) -> Optional[str]:
        if name in self._overlay:
            return self._overlay[name]
        return self._incoming.get(name)

    def _get(self, name: str, max_age: Optional[int] = None) -> Optional[str]:
        return self._sealer.unseal(name, self._raw(name), max_age=max_age)

    def _put(self, name: str, value: str, max_age: int) -> None:
        self._overlay[name] = self._sealer.seal(name, value)
        self._max_ages[name] = max_age
        self._unsent.add(name)

    def _delete(self, name: str) -> None:
        if self._raw(name) is None and name not in self._overlay:
            return
        self._overlay[name] = None
        self._unsent.add(name)

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._unsent)

    # Session tokens

    def store(self, tokens: TokenPair) -> None:
        """Persist a token pair in the session cookies."""
        max_age = self.config.session_max_age
        self._put(c.ACCESS_TOKEN_COOKIE, tokens.access_token, max_age)
        self._put(c.EXPIRES_AT_COOKIE, str(int(tokens.expires_at.timestamp())), max_age)
        if tokens.refresh_token:
            self._put(c.REFRESH_TOKEN_COOKIE, tokens.refresh_token, max_age)
        else:
            self._delete(c.REFRESH_TOKEN_COOKIE)
        if tokens.id_token:
            self._put(c.ID_TOKEN_COOKIE, tokens.id_token, max_age)
        else:
            self._delete(c.ID_TOKEN_COOKIE)

    def read(self) -> Optional[TokenPair]:
        """Read the session tokens without any network call.

        A session with a refresh token but no readable access token is
        returned as already expired so the next :meth:`ensure_fresh` renews it.
        Tampered or unreadable cookies count as absent.
        """
        access_token = self._get(c.ACCESS_TOKEN_COOKIE)
        refresh_token = self._get(c.REFRESH_TOKEN_COOKIE)
        id_token = self._get(c.ID_TOKEN_COOKIE)

        expires_at: Optional[datetime] = None
        raw_expiry = self._get(c.EXPIRES_AT_COOKIE)
        if raw_expiry is not None:
            try:
                expires_at = datetime.fromtimestamp(int(raw_expiry), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                expires_at = None

        if access_token and expires_at is not None:
            return TokenPair(access_token, refresh_token, expires_at, id_token)
        if refresh_token:
            return TokenPair("", refresh_token, datetime.fromtimestamp(0, tz=timezone.utc), id_token)
        return None

    def read_id_token(self) -> Optional[str]:
        return self._get(c.ID_TOKEN_COOKIE)

    def has_session_cookies(self) -> bool:
        return any(self._raw(name) is not None for name in c.SESSION_COOKIES)

    def clear(self) -> None:
        """Remove every session cookie."""
        for name in c.SESSION_COOKIES:
            self._delete(name)

    async def ensure_fresh(self, tokens: TokenPair) -> TokenPair:
        """Return usable tokens, refreshing when the access token is (nearly) expired.

        Concurrent refreshes of the same refresh token, in this request or
        any other, share one provider call.

        Raises:
            RefreshFailedError: If a refresh was needed and did not succeed.
                The session has been cleared by then.
        """
        if not tokens.is_expired(self.config.refresh_leeway_seconds):
            return tokens

        refresh_token = tokens.refresh_token
        if not refresh_token:
            logger.info("Access token expired and no refresh token is available")
            self.clear()
            raise RefreshFailedError("Session expired and cannot be refreshed")

        key = "refresh:" + hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()[:32]
        try:
            refreshed = await self._refresh_flight.do(key, lambda: self._provider.refresh(refresh_token))
        except AuthError as e:
            logger.info(f"Token refresh failed, clearing session: {e.error_code}")
            self.clear()
            raise RefreshFailedError("Session could not be refreshed") from e

        if refreshed.id_token is None and tokens.id_token:
            refreshed = replace(refreshed, id_token=tokens.id_token)
        self.store(refreshed)
        return refreshed

    # Pending login attempt

    def save_oauth_state(self, state: OAuthState) -> None:
        self._put(c.OAUTH_STATE_COOKIE, state.to_json(), self.config.oauth_state_max_age)

    def load_oauth_state(self) -> Optional[OAuthState]:
        """Return the pending login attempt, or None if absent, expired or tampered."""
        raw = self._get(c.OAUTH_STATE_COOKIE, max_age=self.config.oauth_state_max_age)
        if raw is None:
            return None
        return OAuthState.from_json(raw)

    def clear_oauth_state(self) -> None:
        self._delete(c.OAUTH_STATE_COOKIE)

    # Response

    def commit(self, response: Response) -> Response:
        """Apply queued cookie changes to ``response``.

        Safe to call more than once; each change is written only once.
        """
        for name in sorted(self._unsent):
            value = self._overlay.get(name)
            if value is None:
                c.delete_auth_cookie(response, self.config, name)
            else:
                c.set_auth_cookie(response, self.config, name, value, self._max_ages[name])
        self._unsent.clear()
        return response
