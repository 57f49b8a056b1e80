"""Cookie names, attributes and sealing.

All session and login-attempt cookies are written through
:func:`set_auth_cookie` and removed through :func:`delete_auth_cookie`, so
``HttpOnly``, ``Secure``, ``SameSite=Lax`` and the path are decided here and
nowhere else.

Values are sealed with Fernet (AES-128-CBC + HMAC-SHA256). The sealed
payload names the cookie it was written for, so a value copied from one
cookie into another does not unseal.
"""

import base64
import json
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from starlette.responses import Response

from storefront_auth.config import AuthConfig

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "session_access_token"
REFRESH_TOKEN_COOKIE = "session_refresh_token"
EXPIRES_AT_COOKIE = "session_expires_at"
ID_TOKEN_COOKIE = "session_id_token"
OAUTH_STATE_COOKIE = "oauth_state"

SESSION_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, EXPIRES_AT_COOKIE, ID_TOKEN_COOKIE)

SAMESITE = "lax"
COOKIE_PATH = "/"


class CookieSealer:
    """Seals and unseals cookie values with a key derived from the cookie secret."""

    def __init__(self, secret: str):
        key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=b"storefront-auth:cookies",
        ).derive(secret.encode("utf-8"))
        self._fernet = Fernet(base64.urlsafe_b64encode(key))

    def seal(self, name: str, value: str, current_time: Optional[int] = None) -> str:
        payload = json.dumps({"n": name, "v": value}, separators=(",", ":")).encode("utf-8")
        if current_time is None:
            token = self._fernet.encrypt(payload)
        else:
            token = self._fernet.encrypt_at_time(payload, current_time)
        # Padding is stripped so the value needs no quoting in Set-Cookie
        return token.decode("ascii").rstrip("=")

    def unseal(self, name: str, sealed: Optional[str], max_age: Optional[int] = None) -> Optional[str]:
        """Return the plain value, or None if absent, tampered, expired or misplaced."""
        if not sealed:
            return None
        token = sealed + "=" * (-len(sealed) % 4)
        try:
            payload = json.loads(self._fernet.decrypt(token.encode("ascii"), ttl=max_age))
        except (InvalidToken, UnicodeEncodeError, ValueError):
            logger.debug(f"Discarding unreadable {name} cookie")
            return None
        if not isinstance(payload, dict) or payload.get("n") != name:
            logger.debug(f"Discarding {name} cookie sealed for another name")
            return None
        value = payload.get("v")
        return value if isinstance(value, str) else None


def set_auth_cookie(response: Response, config: AuthConfig, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path=COOKIE_PATH,
        domain=config.cookie_domain,
        secure=config.cookie_secure,
        httponly=True,
        samesite=SAMESITE,
    )


def delete_auth_cookie(response: Response, config: AuthConfig, name: str) -> None:
    response.delete_cookie(
        key=name,
        path=COOKIE_PATH,
        domain=config.cookie_domain,
        secure=config.cookie_secure,
        httponly=True,
        samesite=SAMESITE,
    )
