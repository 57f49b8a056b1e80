"""PKCE (Proof Key for Code Exchange) helpers, RFC 7636.

Only the ``S256`` challenge method is supported. There is deliberately no
``plain`` method to fall back to.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

CODE_CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCECodePair:
    """PKCE code verifier and challenge pair."""
    verifier: str
    challenge: str
    method: str = CODE_CHALLENGE_METHOD


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


class PKCEGenerator:
    """Utility class for generating PKCE code verifiers and challenges."""

    # RFC 7636 specifies minimum length of 43 and maximum of 128
    MIN_VERIFIER_LENGTH = 43
    MAX_VERIFIER_LENGTH = 128
    DEFAULT_VERIFIER_LENGTH = 64

    @staticmethod
    def generate_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
        """Generate a cryptographically random code verifier.

        Args:
            length: Length of the code verifier (43-128 characters)

        Returns:
            Base64URL-encoded code verifier

        Raises:
            ValueError: If length is outside the valid range
        """
        if not (PKCEGenerator.MIN_VERIFIER_LENGTH <= length <= PKCEGenerator.MAX_VERIFIER_LENGTH):
            raise ValueError(
                f"Code verifier length must be between {PKCEGenerator.MIN_VERIFIER_LENGTH} "
                f"and {PKCEGenerator.MAX_VERIFIER_LENGTH} characters"
            )

        # 3 random bytes encode to 4 characters
        random_bytes = secrets.token_bytes((length * 3) // 4 + 3)
        return _base64url(random_bytes)[:length]

    @staticmethod
    def derive_challenge(code_verifier: str) -> str:
        """Derive the S256 code challenge for a code verifier."""
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return _base64url(digest)

    @staticmethod
    def generate_pair(verifier_length: int = DEFAULT_VERIFIER_LENGTH) -> PKCECodePair:
        """Generate a complete PKCE code verifier/challenge pair."""
        verifier = PKCEGenerator.generate_verifier(verifier_length)
        return PKCECodePair(verifier=verifier, challenge=PKCEGenerator.derive_challenge(verifier))


class StateGenerator:
    """Utility class for generating CSRF nonces and OpenID nonces."""

    DEFAULT_NONCE_BYTES = 32

    @staticmethod
    def generate_csrf_nonce(nbytes: int = DEFAULT_NONCE_BYTES) -> str:
        """Generate a single-use CSRF nonce for the ``state`` round trip."""
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    def generate_nonce(nbytes: int = 16) -> str:
        """Generate the OpenID Connect ``nonce`` sent with the authorization request."""
        return secrets.token_hex(nbytes)
