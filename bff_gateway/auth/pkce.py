"""
PKCE and anti-CSRF state generation.

Verifier and challenge follow RFC 7636 with the S256 method; the state value
is independent of the PKCE pair.
"""

import base64
import hashlib
import secrets
from typing import NamedTuple


CODE_CHALLENGE_METHOD = "S256"

VERIFIER_BYTES = 32
STATE_BYTES = 16


class PKCEPair(NamedTuple):
    verifier: str
    challenge: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43 characters, 256 bits)
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier
    """
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate() -> PKCEPair:
    """Return a fresh verifier together with its S256 challenge."""
    verifier = generate_code_verifier()
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state() -> str:
    """Anti-CSRF state token: 128 random bits, hex encoded."""
    return secrets.token_hex(STATE_BYTES)
