"""Encoding of the OAuth ``state`` parameter.

The state sent to the provider packs the CSRF nonce and an optional
post-login path into one opaque token::

    base64url(json({"csrf": ..., "returnTo": ..., "sig": ...}))

Keys are sorted so equal inputs always encode identically. ``sig`` is an
HMAC over the other fields, so a tampered ``returnTo`` is detected even when
the CSRF nonce survives.

Decoding never raises. It returns one of three variants:

* :class:`StructuredState` - a signed map produced by :meth:`StateCodec.encode`
* :class:`LegacyState` - a bare CSRF token from clients that predate the map
* :class:`MalformedState` - anything else, with the reason

and :meth:`StateCodec.validate` turns the variant into a validated
``returnTo`` or one of the state errors.
"""

import base64
import binascii
import hashlib
import hmac
import json
import re
from dataclasses import dataclass
from typing import Optional, Union

from storefront_auth.errors import CsrfMismatchError, MalformedStateError, UnsafeRedirectError
from storefront_auth.urls import is_safe_return_path

# Bare tokens issued before structured state: hex or urlsafe nonces.
_LEGACY_TOKEN = re.compile(r"^[A-Za-z0-9_-]{16,256}$")
MAX_STATE_LENGTH = 4096


@dataclass(frozen=True)
class StructuredState:
    csrf: str
    return_to: Optional[str] = None


@dataclass(frozen=True)
class LegacyState:
    csrf: str
    return_to: Optional[str] = None


@dataclass(frozen=True)
class MalformedState:
    reason: str


DecodedState = Union[StructuredState, LegacyState, MalformedState]


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(raw: str) -> bytes:
    padded = raw + "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class StateCodec:
    """Encodes, decodes and validates the ``state`` parameter."""

    def __init__(self, secret: str, accept_legacy: bool = True):
        self._key = hashlib.sha256(b"storefront-auth:state:" + secret.encode("utf-8")).digest()
        self.accept_legacy = accept_legacy

    def _sign(self, csrf: str, return_to: Optional[str]) -> str:
        message = json.dumps({"csrf": csrf, "returnTo": return_to}, sort_keys=True, separators=(",", ":"))
        return _b64url_encode(hmac.new(self._key, message.encode("utf-8"), hashlib.sha256).digest())

    def encode(self, csrf_nonce: str, return_to: Optional[str] = None) -> str:
        """Produce the transport-safe state string."""
        payload = {"csrf": csrf_nonce, "sig": self._sign(csrf_nonce, return_to)}
        if return_to is not None:
            payload["returnTo"] = return_to
        serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return _b64url_encode(serialized.encode("utf-8"))

    def decode(self, raw: Optional[str]) -> DecodedState:
        """Decode a raw ``state`` value into one of the tagged variants."""
        if not raw:
            return MalformedState("missing state")
        if len(raw) > MAX_STATE_LENGTH:
            return MalformedState("state too long")

        structured = self._decode_structured(raw)
        if structured is not None:
            return structured

        if self.accept_legacy and _LEGACY_TOKEN.match(raw):
            return LegacyState(csrf=raw)
        return MalformedState("state is neither a signed map nor a legacy token")

    def _decode_structured(self, raw: str) -> Optional[DecodedState]:
        """Return a structured variant, or None when ``raw`` is not a JSON map."""
        try:
            payload = json.loads(_b64url_decode(raw).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError, RecursionError):
            # RecursionError: deeply nested arrays or maps
            return None
        if not isinstance(payload, dict):
            return None

        csrf = payload.get("csrf")
        return_to = payload.get("returnTo")
        sig = payload.get("sig")
        if not isinstance(csrf, str) or not csrf:
            return MalformedState("state map has no csrf field")
        if return_to is not None and not isinstance(return_to, str):
            return MalformedState("returnTo is not a string")
        if not isinstance(sig, str) or not hmac.compare_digest(sig, self._sign(csrf, return_to)):
            return MalformedState("state signature mismatch")
        return StructuredState(csrf=csrf, return_to=return_to)

    def validate(self, decoded: DecodedState, stored_csrf: str) -> Optional[str]:
        """Check a decoded state against the stored CSRF nonce.

        Returns:
            The validated ``returnTo`` path, or None

        Raises:
            MalformedStateError: If the state could not be decoded
            CsrfMismatchError: If the CSRF nonce does not match
            UnsafeRedirectError: If ``returnTo`` is not a same-origin path
        """
        if isinstance(decoded, MalformedState):
            raise MalformedStateError(decoded.reason)
        if not stored_csrf or not hmac.compare_digest(
            decoded.csrf.encode("utf-8"), stored_csrf.encode("utf-8")
        ):
            raise CsrfMismatchError("state csrf does not match the pending login attempt")
        if decoded.return_to is not None and not is_safe_return_path(decoded.return_to):
            raise UnsafeRedirectError(f"Rejected returnTo {decoded.return_to!r}")
        return decoded.return_to
