"""Exceptions raised by the OIDC client."""

import json
from typing import Optional

import aiohttp


class OIDCClientException(Exception):
    "Raised when the OIDC Client encounters an error"


class ConfigurationError(OIDCClientException):
    "Raised when the client configuration is missing or invalid."


class RandomnessError(OIDCClientException):
    "Raised when no cryptographically secure random source is available."


class DiscoveryError(OIDCClientException):
    "Raised when the discovery document is not found, invalid or otherwise malformed."

    type: Optional[str]
    details: Optional[dict]

    def __init__(self, **kwargs):
        self.message = "OIDC Discovery document is invalid"
        self.type = kwargs.pop("type", None)
        self.details = kwargs.pop("details", None)
        super().__init__(self.message)

    def get_detail_string(self) -> str:
        """Returns a detailed string for logging purposes."""
        string = []

        if self.type:
            string.append(f"type: {self.type}")

        if self.details:
            for key, value in self.details.items():
                string.append(f"{key}: {value}")

        return ", ".join(string)

    def __str__(self):
        detail = self.get_detail_string()
        return f"{self.message} ({detail})" if detail else self.message


class TokenEndpointError(OIDCClientException):
    """Raised when a token or userinfo request fails.

    Carries the upstream HTTP status (None when no response was received),
    the raw response body and, when the body is a standard OAuth2 error
    document, its machine readable ``error`` and ``error_description``.
    """

    status: Optional[int]
    body: Optional[str]
    error: Optional[str]
    error_description: Optional[str]

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status = status
        self.body = body
        self.error = None
        self.error_description = None

        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                self.error = payload.get("error")
                self.error_description = payload.get("error_description")

        super().__init__(message)

    def __str__(self):
        message = super().__str__()
        if self.status is None:
            return message
        return f"{message} (status {self.status}): {self.body}"


class TokenExchangeError(TokenEndpointError):
    "Raised when the authorization code could not be exchanged for tokens."


class RefreshError(TokenEndpointError):
    "Raised when the refresh token could not be exchanged for new tokens."


class UserInfoError(TokenEndpointError):
    "Raised when the user info is invalid or cannot be obtained."


class IDTokenValidationError(OIDCClientException):
    """Raised when the ID token is invalid, unverifiable, or claims validation fails."""


class MalformedTokenError(IDTokenValidationError):
    "Raised when the ID token cannot be parsed as a signed JWT."


class SigningAlgorithmError(IDTokenValidationError):
    "Raised when the id_token is signed with an algorithm outside the RSA allow list."

    def __init__(self, alg):
        self.alg = alg
        super().__init__(f"ID token signing algorithm not allowed: {alg}")


class SignatureError(IDTokenValidationError):
    "Raised when the ID token signature does not verify."


class IssuerMismatchError(IDTokenValidationError):
    "Raised when the iss claim differs from the configured issuer."

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid issuer: expected {expected}, got {actual}")


class AudienceMismatchError(IDTokenValidationError):
    "Raised when the aud claim does not name the configured client id."

    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid audience: expected {expected}, got {actual}")


class TokenExpiredError(IDTokenValidationError):
    "Raised when the exp claim is not in the future."

    def __init__(self, expires_at):
        self.expires_at = expires_at
        super().__init__(f"ID token has expired (exp: {expires_at})")


class NonceMismatchError(IDTokenValidationError):
    "Raised when the nonce claim differs from the nonce sent in the authorization request."


class AccessTokenHashMismatchError(IDTokenValidationError):
    "Raised when the at_hash claim does not match the access token."


class UnknownKeyError(IDTokenValidationError):
    "Raised when no key with the requested kid exists in the provider key set."

    def __init__(self, kid):
        self.kid = kid
        super().__init__(f"Key with kid {kid} not found")


class MalformedKeyError(IDTokenValidationError):
    "Raised when a JWKS entry cannot be converted into an RSA public key."

    def __init__(self, kid, reason):
        self.kid = kid
        self.reason = reason
        super().__init__(f"Key with kid {kid} is malformed: {reason}")


class KeySetFetchError(IDTokenValidationError):
    "Raised when the JWKS is invalid or cannot be obtained."


class StorageError(OIDCClientException):
    "Raised when the token storage rejects an operation."


class InvalidUserIDError(StorageError):
    "Raised when an empty user id reaches the storage boundary."

    def __init__(self):
        super().__init__("User ID cannot be empty")


class NotFoundError(StorageError):
    "Raised when no tokens are stored for the requested user."

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Tokens not found for user {user_id}")


class HTTPClientError(aiohttp.ClientResponseError):
    "Raised when the HTTP client encounters not OK (200) status code."

    body: str

    def __init__(self, *args, **kwargs):
        self.body = kwargs.pop("body")
        super().__init__(*args, **kwargs)

    def __str__(self):
        return f"{self.status} ({self.message}) with response body: {self.body}"
