"""PKCE and state token helpers (RFC 7636)."""

import base64
import hashlib
import secrets

CODE_VERIFIER_BYTES = 32
STATE_BYTES = 16


def base64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(num_bytes: int = CODE_VERIFIER_BYTES) -> str:
    """Generate a PKCE code verifier from at least 32 random bytes."""
    return base64url_encode(secrets.token_bytes(max(num_bytes, CODE_VERIFIER_BYTES)))


def generate_state(num_bytes: int = STATE_BYTES) -> str:
    """Generate an opaque OAuth state token from at least 16 random bytes."""
    return base64url_encode(secrets.token_bytes(max(num_bytes, STATE_BYTES)))


def compute_code_challenge(verifier: str) -> str:
    """S256 code challenge: base64url(SHA-256(verifier))."""
    return base64url_encode(hashlib.sha256(verifier.encode("utf-8")).digest())
