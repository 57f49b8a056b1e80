"""Data carried through the login round trip and the session lifecycle."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class ProviderEndpoints:
    """Resolved identity provider endpoints."""
    authorization_endpoint: str
    token_endpoint: str
    logout_endpoint: str
    issuer: Optional[str] = None
    source: str = "explicit"  # explicit, discovery or constructed


@dataclass
class OAuthState:
    """Server-held half of a pending login attempt.

    Lives only in the short-lived ``oauth_state`` cookie between the login
    redirect and the callback.
    """
    code_verifier: str
    csrf_nonce: str
    nonce: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        return json.dumps(
            {
                "code_verifier": self.code_verifier,
                "csrf_nonce": self.csrf_nonce,
                "nonce": self.nonce,
                "created_at": int(self.created_at.timestamp()),
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> Optional["OAuthState"]:
        try:
            data = json.loads(raw)
            return cls(
                code_verifier=str(data["code_verifier"]),
                csrf_nonce=str(data["csrf_nonce"]),
                nonce=str(data.get("nonce", "")),
                created_at=datetime.fromtimestamp(int(data["created_at"]), tz=timezone.utc),
            )
        except (ValueError, KeyError, TypeError):
            return None


@dataclass
class TokenPair:
    """Access/refresh token pair issued by the token endpoint."""
    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    id_token: Optional[str] = None

    def is_expired(self, leeway_seconds: int = 0, now: Optional[datetime] = None) -> bool:
        """Check whether the access token has expired, or will within ``leeway_seconds``."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at - timedelta(seconds=leeway_seconds) <= now

    @classmethod
    def from_token_response(
        cls,
        token_response: Dict[str, Any],
        previous_refresh_token: Optional[str] = None,
        default_lifetime: int = 3600,
    ) -> "TokenPair":
        """Build a pair from a token endpoint JSON body.

        Raises:
            KeyError: If the body carries no access token
        """
        access_token = token_response["access_token"]
        if not access_token:
            raise KeyError("access_token")
        try:
            expires_in = int(token_response.get("expires_in") or default_lifetime)
        except (TypeError, ValueError):
            expires_in = default_lifetime
        return cls(
            access_token=access_token,
            refresh_token=token_response.get("refresh_token") or previous_refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            id_token=token_response.get("id_token"),
        )


class CustomerIdentity(BaseModel):
    """Customer identity as returned by the Customer Account API."""

    model_config = {"populate_by_name": True}

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    phone: Optional[str] = None


class SessionResult(BaseModel):
    """What downstream features learn about the current request."""

    model_config = {"populate_by_name": True}

    logged_in: bool = Field(alias="loggedIn")
    customer: Optional[CustomerIdentity] = None

    @classmethod
    def anonymous(cls) -> "SessionResult":
        return cls(logged_in=False)

    @classmethod
    def authenticated(cls, customer: CustomerIdentity) -> "SessionResult":
        return cls(logged_in=True, customer=customer)

    def to_public_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
