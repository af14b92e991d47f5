"""ID token validation against the provider's signing keys."""

import logging
import time
from typing import Optional

from joserfc import jws, jwt, errors as joserfc_errors

from ..config.const import ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS
from .exceptions import (
    AccessTokenHashMismatchError,
    AudienceMismatchError,
    IssuerMismatchError,
    MalformedTokenError,
    NonceMismatchError,
    SignatureError,
    SigningAlgorithmError,
    TokenExpiredError,
)
from .helpers import compute_at_hash
from .jwks import KeySetCache
from .types import IDTokenClaims

_LOGGER = logging.getLogger(__name__)


class IDTokenValidator:
    """Verifies ID token signatures and standard claims.

    Validation runs parse, key lookup, signature verification and claim checks
    in that order and stops at the first failure. Claims are only returned once
    every step passed.
    """

    def __init__(
        self,
        key_cache: KeySetCache,
        issuer: str,
        client_id: str,
        verbose_debug_mode: bool = False,
    ):
        self.key_cache = key_cache
        self.issuer = issuer
        self.client_id = client_id
        self.verbose_debug_mode = verbose_debug_mode

    def _parse_header(self, id_token: str) -> tuple[str, str]:
        """Returns the (kid, alg) pair of the unverified token header."""
        if not isinstance(id_token, str) or not id_token:
            raise MalformedTokenError("ID token is empty")

        try:
            token_obj = jws.extract_compact(id_token.encode())
        except (joserfc_errors.JoseError, ValueError) as e:
            _LOGGER.warning("Could not parse received id_token: %s", e)
            raise MalformedTokenError("ID token is not a compact JWS") from e

        unverified_header = token_obj.protected
        if not unverified_header:
            _LOGGER.warning("Could not get header from received id_token.")
            raise MalformedTokenError("ID token header is missing")

        kid = unverified_header.get("kid")
        if not kid or not isinstance(kid, str):
            _LOGGER.warning("JWT does not have 'kid' (Key ID)")
            raise MalformedTokenError("Token header missing kid")

        alg = unverified_header.get("alg")
        if not alg or not isinstance(alg, str):
            _LOGGER.warning("JWT does not have alg")
            raise MalformedTokenError("Token header missing alg")

        return kid, alg

    def _check_audience(self, audience) -> None:
        # OpenID Connect Core 1.0 Section 3.1.3.7.3
        # The aud Claim may be a single string or an array containing client_id
        if isinstance(audience, str):
            valid = audience == self.client_id
        elif isinstance(audience, list):
            valid = self.client_id in audience
        else:
            valid = False

        if not valid:
            _LOGGER.warning(
                "ID token audience mismatch. Expected: %s, got: %s",
                self.client_id,
                audience,
            )
            raise AudienceMismatchError(self.client_id, audience)

    def _validate_claims(
        self,
        claims: dict,
        alg: str,
        nonce: Optional[str],
        access_token: Optional[str],
        now: float,
    ) -> None:
        # OpenID Connect Core 1.0 Section 3.1.3.7.2
        # The Issuer Identifier for the OpenID Provider MUST exactly
        # match the value of the iss (issuer) Claim.
        issuer = claims.get("iss")
        if issuer != self.issuer:
            _LOGGER.warning(
                "ID token issuer mismatch. Expected: %s, got: %s", self.issuer, issuer
            )
            raise IssuerMismatchError(self.issuer, issuer)

        self._check_audience(claims.get("aud"))

        # OpenID Connect Core 1.0 Section 3.1.3.7.9
        # A missing or non numeric exp can never be in the future
        expires_at = claims.get("exp")
        if (
            isinstance(expires_at, bool)
            or not isinstance(expires_at, (int, float))
            or expires_at <= now
        ):
            _LOGGER.warning("ID token has expired (exp: %s, now: %d)", expires_at, now)
            raise TokenExpiredError(expires_at)

        # OpenID Connect Core 1.0 Section 3.1.3.7.11
        # If a nonce value was sent in the Authentication Request,
        # a nonce Claim MUST be present and its value checked.
        if nonce is not None and claims.get("nonce") != nonce:
            _LOGGER.warning("Nonce mismatch!")
            raise NonceMismatchError("ID token nonce does not match the request")

        # OpenID Connect Core 1.0 §3.1.3.6: at_hash binds the ID token to
        # the access token issued alongside it
        actual_at_hash = claims.get("at_hash")
        if access_token and actual_at_hash is not None:
            expected_at_hash = compute_at_hash(access_token, alg)
            if actual_at_hash != expected_at_hash:
                _LOGGER.warning(
                    "ID token at_hash mismatch! Expected: %s, got: %s",
                    expected_at_hash,
                    actual_at_hash,
                )
                raise AccessTokenHashMismatchError(
                    "ID token at_hash does not match the access token"
                )

    async def validate(
        self,
        id_token: str,
        nonce: Optional[str] = None,
        access_token: Optional[str] = None,
        now: Optional[float] = None,
    ) -> IDTokenClaims:
        """Validates an ID token and returns its claims."""
        kid, alg = self._parse_header(id_token)

        # Mandatory allow list, checked before any key is looked up
        if alg not in ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS:
            _LOGGER.warning(
                "ID Token received signed with unsupported algorithm: %s (allowed: %s)",
                alg,
                ALLOWED_ID_TOKEN_SIGNING_ALGORITHMS,
            )
            raise SigningAlgorithmError(alg)

        if self.verbose_debug_mode:
            _LOGGER.debug("ID token signed with algorithm '%s' and key '%s'", alg, kid)

        signing_key = await self.key_cache.get_key(kid)

        try:
            # OpenID Connect Core 1.0 Section 3.1.3.7.6
            # The Client MUST validate the signature of all other ID Tokens
            # according to JWS [JWS] using the algorithm specified in the JWT
            # alg Header Parameter.
            decoded_token = jwt.decode(id_token, signing_key.key, algorithms=[alg])
        except joserfc_errors.BadSignatureError as e:
            _LOGGER.warning("ID token signature verification failed (kid=%s)", kid)
            raise SignatureError("ID token signature is invalid") from e
        except (joserfc_errors.JoseError, ValueError) as e:
            _LOGGER.warning("JWT verification failed: %s", e)
            raise MalformedTokenError(f"ID token could not be decoded: {e}") from e

        claims = decoded_token.claims
        if not isinstance(claims, dict):
            _LOGGER.warning("ID token payload is not a JSON object")
            raise MalformedTokenError("ID token payload is not a JSON object")

        self._validate_claims(
            claims,
            alg,
            nonce,
            access_token,
            time.time() if now is None else now,
        )

        try:
            validated = IDTokenClaims.from_claims(claims)
        except TypeError as e:
            _LOGGER.warning("ID token is missing required claims: %s", e)
            raise MalformedTokenError("ID token is missing required claims") from e

        if self.verbose_debug_mode:
            _LOGGER.debug("ID token for subject %s validated", validated.sub)

        return validated
