"""Generic data types"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional


@dataclass(frozen=True)
class ProviderMetadata:
    """OIDC provider metadata, obtained once through discovery"""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    end_session_endpoint: Optional[str] = None

    @classmethod
    def from_document(cls, document: dict) -> "ProviderMetadata":
        """Builds the metadata from a (validated) discovery document."""
        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            userinfo_endpoint=document.get("userinfo_endpoint"),
            jwks_uri=document.get("jwks_uri"),
            end_session_endpoint=document.get("end_session_endpoint"),
        )


@dataclass(frozen=True)
class PKCEParameters:
    """RFC 7636 code verifier and its S256 code challenge"""

    code_verifier: str
    code_challenge: str


@dataclass
class AuthorizationRequest:
    """Optional parameters of an authorization request"""

    state: Optional[str] = None
    nonce: Optional[str] = None
    code_challenge: Optional[str] = None
    # none, login, consent or select_account
    prompt: Optional[str] = None
    # Maximum authentication age in seconds, only sent when positive
    max_age: int = 0
    login_hint: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationFlow:
    """Authorization URL plus the secrets to keep until the callback"""

    url: str
    state: str
    code_verifier: str
    nonce: Optional[str] = None


@dataclass
class TokenSet:
    """OAuth2 token endpoint response"""

    access_token: str
    token_type: str = ""
    expires_in: int = 0
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None

    @classmethod
    def from_response(cls, response: dict) -> "TokenSet":
        """Builds a token set from a decoded token endpoint response.

        Raises KeyError when the access token is missing and ValueError when
        it is empty or not a string.
        """
        access_token = response["access_token"]
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("access_token must be a non-empty string")

        try:
            expires_in = int(response.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0

        return cls(
            access_token=access_token,
            token_type=response.get("token_type") or "",
            expires_in=expires_in,
            refresh_token=response.get("refresh_token") or None,
            id_token=response.get("id_token") or None,
            scope=response.get("scope") or None,
        )

    def as_dict(self) -> dict:
        """Returns the token set as a token endpoint style dict."""
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(kw_only=True)
class StandardClaims:
    """Standard OIDC profile, email and phone claims"""

    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    middle_name: Optional[str] = None
    nickname: Optional[str] = None
    preferred_username: Optional[str] = None
    profile: Optional[str] = None
    picture: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    gender: Optional[str] = None
    birthdate: Optional[str] = None
    zoneinfo: Optional[str] = None
    locale: Optional[str] = None
    phone_number: Optional[str] = None
    phone_number_verified: bool = False
    updated_at: Optional[int] = None
    # Every claim as received, including non-standard ones
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_claims(cls, claims: dict):
        """Picks the known claims out of a claims dict."""
        known = {f.name for f in fields(cls)} - {"raw"}
        values = {key: value for key, value in claims.items() if key in known}
        return cls(raw=dict(claims), **values)


@dataclass(kw_only=True)
class UserInfo(StandardClaims):
    """Userinfo endpoint response"""

    sub: str


@dataclass(kw_only=True)
class IDTokenClaims(StandardClaims):
    """Claims of a fully validated ID token"""

    iss: str
    sub: str
    aud: str | list[str]
    exp: int
    iat: Optional[int] = None
    nonce: Optional[str] = None
    auth_time: Optional[int] = None
    session_state: Optional[str] = None
    at_hash: Optional[str] = None
