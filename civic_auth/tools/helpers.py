"""Helper functions for the OIDC flow."""

import base64
import hashlib
import os

from .exceptions import RandomnessError
from .types import PKCEParameters

# 32 random bytes encode to 43 base64url characters (256 bits of entropy),
# the minimum code_verifier length allowed by RFC 7636
SECRET_BYTES = 32


def base64url_encode(value: bytes) -> str:
    """Uses base64url encoding on a given byte string"""
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode("utf-8")


def base64url_decode(value: str) -> bytes:
    """Uses base64url decoding on a given string"""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def generate_random_url_string(length: int = SECRET_BYTES) -> str:
    """Generates a random URL safe string (base64_url encoded)"""
    try:
        random_bytes = os.urandom(length)
    except (NotImplementedError, OSError) as e:
        raise RandomnessError("Secure random source is unavailable") from e
    return base64url_encode(random_bytes)


def generate_state() -> str:
    """Generates the CSRF state parameter for an authorization request."""
    return generate_random_url_string()


def generate_nonce() -> str:
    """Generates a nonce to bind an ID token to its authorization request."""
    return generate_random_url_string()


def generate_code_verifier() -> str:
    """Generates a PKCE code verifier (RFC 7636 §4.1)."""
    return generate_random_url_string()


def compute_code_challenge(code_verifier: str) -> str:
    """Derives the S256 code challenge of a code verifier (RFC 7636 §4.2)."""
    return base64url_encode(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce_pair() -> PKCEParameters:
    """Generates a code verifier and its matching code challenge."""
    code_verifier = generate_code_verifier()
    return PKCEParameters(
        code_verifier=code_verifier,
        code_challenge=compute_code_challenge(code_verifier),
    )


def compute_at_hash(access_token: str, alg: str) -> str:
    """Computes the at_hash of an access token (OpenID Connect Core §3.1.3.6).

    The hash function follows the ID token's alg (RS256 -> SHA-256, and so on),
    at_hash is the base64url encoding of the left half of the digest.
    """
    digest = hashlib.new(f"sha{alg[2:]}", access_token.encode("utf-8")).digest()
    return base64url_encode(digest[: len(digest) // 2])
