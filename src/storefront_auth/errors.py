"""Error taxonomy for the storefront authentication flow.

Every failure the login, callback, refresh and logout paths can hit is a
subclass of :class:`AuthError`. Each class carries a stable ``error_code``
used in redirect query strings and JSON error bodies, and a
``security_event`` flag that tells the HTTP layer to log the failure on the
security logger.
"""

from enum import Enum
from typing import Dict, Optional


class OAuth2Error(str, Enum):
    """OAuth2 error codes as defined in RFC 6749."""
    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    INVALID_SCOPE = "invalid_scope"
    ACCESS_DENIED = "access_denied"
    UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
    SERVER_ERROR = "server_error"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    LOGIN_REQUIRED = "login_required"
    CONSENT_REQUIRED = "consent_required"


GENERIC_RETRY_MESSAGE = "Something went wrong while signing you in. Please try again."

USER_MESSAGES: Dict[str, str] = {
    OAuth2Error.ACCESS_DENIED.value: "Sign-in was cancelled.",
    OAuth2Error.LOGIN_REQUIRED.value: "Please sign in to continue.",
    OAuth2Error.CONSENT_REQUIRED.value: "Please approve access to continue.",
    OAuth2Error.TEMPORARILY_UNAVAILABLE.value: "Sign-in is temporarily unavailable. Please try again shortly.",
    OAuth2Error.SERVER_ERROR.value: "Sign-in is temporarily unavailable. Please try again shortly.",
    "missing_code": GENERIC_RETRY_MESSAGE,
    "session_expired": "Your sign-in attempt expired. Please try again.",
    "invalid_state": GENERIC_RETRY_MESSAGE,
    "unsafe_redirect": GENERIC_RETRY_MESSAGE,
    "exchange_failed": "We could not complete sign-in with the identity provider.",
    "session_invalid": "Your session has ended. Please sign in again.",
    "configuration_error": "Sign-in is not available right now.",
    "discovery_unavailable": "Sign-in is not available right now.",
}


KNOWN_ERROR_CODES = (
    set(USER_MESSAGES)
    | {e.value for e in OAuth2Error}
    | {"authorization_failed", "identity_unavailable", "login_required"}
)


def user_message(error_code: str) -> str:
    """Return the user-facing message for an error code."""
    return USER_MESSAGES.get(error_code, GENERIC_RETRY_MESSAGE)


def map_provider_error(error_code: Optional[str]) -> str:
    """Map a provider-supplied ``error`` value onto a known code.

    Unknown values collapse to ``authorization_failed`` so arbitrary provider
    text never reaches the login page.
    """
    try:
        return OAuth2Error(error_code).value
    except ValueError:
        return "authorization_failed"


class AuthError(Exception):
    """Base class for authentication flow failures."""

    error_code: str = "authentication_failed"
    security_event: bool = False

    def __init__(self, message: str = "", *, error_description: Optional[str] = None):
        self.error_description = error_description
        super().__init__(message or self.error_code)

    @property
    def user_message(self) -> str:
        return user_message(self.error_code)


class ConfigurationError(AuthError):
    """The process is not configured to run a login."""
    error_code = "configuration_error"


class DiscoveryUnavailableError(ConfigurationError):
    """No endpoint resolution tier produced usable provider endpoints."""
    error_code = "discovery_unavailable"


class ProviderError(AuthError):
    """The provider redirected back with an OAuth ``error`` parameter."""

    def __init__(self, provider_code: Optional[str], error_description: Optional[str] = None):
        self.provider_code = provider_code
        self.error_code = map_provider_error(provider_code)
        super().__init__(
            f"Provider returned error {provider_code!r}",
            error_description=error_description,
        )


class MissingCodeError(AuthError):
    error_code = "missing_code"


class SessionExpiredError(AuthError):
    """The pending login attempt state was lost, expired or already used."""
    error_code = "session_expired"


class InvalidStateError(AuthError):
    """The ``state`` parameter failed validation."""
    error_code = "invalid_state"
    security_event = True


class MalformedStateError(InvalidStateError):
    pass


class CsrfMismatchError(InvalidStateError):
    pass


class UnsafeRedirectError(AuthError):
    """A post-login or post-logout target was not a same-origin path."""
    error_code = "unsafe_redirect"
    security_event = True


class ExchangeFailedError(AuthError):
    """The token endpoint rejected a code exchange or refresh."""

    error_code = "exchange_failed"

    def __init__(
        self,
        provider_code: str,
        error_description: str,
        *,
        transient: bool = False,
        status_code: Optional[int] = None,
    ):
        self.provider_code = provider_code
        self.transient = transient
        self.status_code = status_code
        super().__init__(
            f"{provider_code}: {error_description}",
            error_description=error_description,
        )


class RefreshFailedError(AuthError):
    """The session could not be refreshed and has been cleared."""
    error_code = "session_invalid"


class IdentityLookupError(AuthError):
    """The customer identity could not be fetched with the access token.

    ``auth_rejected`` is true when the provider refused the token, as opposed
    to a network or server failure.
    """

    error_code = "identity_unavailable"

    def __init__(self, message: str, *, auth_rejected: bool = False):
        self.auth_rejected = auth_rejected
        super().__init__(message)
