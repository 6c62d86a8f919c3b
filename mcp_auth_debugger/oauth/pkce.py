"""PKCE parameters and anti-CSRF state generation (RFC 7636).

The verifier is the only PKCE value that is persisted: it has to survive the
browser round trip so the token request can prove possession of it. The
challenge is recomputed from the verifier whenever it is needed.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

# RFC 7636 Section 4.1 length bounds
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128
DEFAULT_VERIFIER_LENGTH = 64

# Unreserved URI characters: ALPHA / DIGIT / "-" / "." / "_" / "~"
VERIFIER_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"

CHALLENGE_METHOD = "S256"


@dataclass(frozen=True)
class PKCEPair:
    """Code verifier and its derived S256 challenge."""

    verifier: str
    challenge: str
    method: str = CHALLENGE_METHOD


def generate_code_verifier(length: int = DEFAULT_VERIFIER_LENGTH) -> str:
    """Generate a high-entropy code verifier.

    Args:
        length: Number of characters, between 43 and 128

    Returns:
        Random string drawn from the unreserved character set

    Raises:
        ValueError: If length is outside the RFC 7636 bounds
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )

    return "".join(secrets.choice(VERIFIER_CHARS) for _ in range(length))


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 challenge: BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair(length: int = DEFAULT_VERIFIER_LENGTH) -> PKCEPair:
    """Generate a fresh verifier and its challenge."""
    verifier = generate_code_verifier(length)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Generate the random ``state`` value bound to one authorization request.

    Returns:
        32-character hex string
    """
    return secrets.token_hex(16)
