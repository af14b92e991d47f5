"""Validation and sanitization helpers for configuration and provider input."""

from __future__ import annotations

from urllib.parse import urlparse


def validate_url(url: str) -> bool:
    """Validate that a URL is properly formatted."""
    try:
        parsed = urlparse(url.strip())
        return bool(parsed.scheme in ("http", "https") and parsed.netloc)
    except (ValueError, TypeError, AttributeError):
        return False


def normalize_issuer(issuer_url: str) -> str:
    """Normalize issuer URL per OIDC §8.1 (scheme/host only, lowercase scheme)."""
    parsed = urlparse(issuer_url.rstrip("/"))
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def sanitize_client_secret(secret: str) -> str:
    """Sanitize client secret input."""
    return secret.strip() if secret else ""


def validate_client_id(client_id: str) -> bool:
    """Validate client ID format."""
    return bool(client_id and client_id.strip())


def validate_user_id(user_id: str) -> bool:
    """Validate a storage user id, which must be a non-empty string."""
    return isinstance(user_id, str) and user_id != ""
