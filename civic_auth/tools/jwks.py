"""Key set cache, maps key ids to RSA public keys from the provider's JWKS."""

import base64
import binascii
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from joserfc import errors as joserfc_errors
from joserfc.jwk import RSAKey

from .exceptions import DiscoveryError, MalformedKeyError, UnknownKeyError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SigningKey:
    """Verifiable public key of the provider"""

    kid: str
    key: RSAKey
    inserted_at: float = field(default_factory=time.time)


def _certificate_to_key(kid: str, certificate: str) -> RSAKey:
    """Extracts the RSA public key of a base64 (not url-safe) DER certificate."""
    try:
        der = base64.b64decode(certificate, validate=True)
        cert = x509.load_der_x509_certificate(der)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedKeyError(kid, f"failed to parse X.509 certificate: {e}") from e

    public_key = cert.public_key()
    if not isinstance(public_key, RSAPublicKey):
        raise MalformedKeyError(kid, "certificate does not contain RSA public key")

    pem = public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    return RSAKey.import_key(pem, {"kid": kid})


def _components_to_key(kid: str, jwk_data: dict) -> RSAKey:
    """Imports an RSA public key from its modulus and exponent."""
    try:
        return RSAKey.import_key(
            {"kty": "RSA", "kid": kid, "n": jwk_data["n"], "e": jwk_data["e"]}
        )
    except (joserfc_errors.JoseError, ValueError, TypeError) as e:
        raise MalformedKeyError(kid, f"invalid modulus/exponent: {e}") from e


def jwk_to_rsa_key(jwk_data: dict) -> RSAKey:
    """Converts a JWKS entry into an RSA public key.

    An embedded X.509 chain (x5c) wins over the raw n/e parameters, the key is
    then taken from the leaf certificate.
    """
    kid = jwk_data.get("kid")

    kty = jwk_data.get("kty")
    if kty is not None and kty != "RSA":
        raise MalformedKeyError(kid, f"unsupported key type {kty}")

    x5c = jwk_data.get("x5c")
    if x5c:
        if not isinstance(x5c, list) or not isinstance(x5c[0], str):
            raise MalformedKeyError(kid, "x5c is not a list of certificates")
        return _certificate_to_key(kid, x5c[0])

    if not jwk_data.get("n") or not jwk_data.get("e"):
        raise MalformedKeyError(kid, "JWK missing required parameters")

    return _components_to_key(kid, jwk_data)


class KeySetCache:
    """Caches the provider's signing keys by kid.

    Converted keys are kept for the lifetime of the cache. A kid that is not
    cached causes a fetch of the full key set, and if it is still not listed
    a single forced re-fetch to cover key rotation races.
    """

    # Fetches per unresolved kid before giving up
    MAX_FETCHES = 2

    def __init__(
        self,
        discovery_client,
        jwks_uri: Optional[str],
        verbose_debug_mode: bool = False,
    ):
        self.discovery_client = discovery_client
        self.jwks_uri = jwks_uri
        self.verbose_debug_mode = verbose_debug_mode
        self._keys: dict[str, SigningKey] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __contains__(self, kid: str) -> bool:
        with self._lock:
            return kid in self._keys

    def clear(self) -> None:
        """Forgets every cached key."""
        with self._lock:
            self._keys.clear()

    def _lookup(self, kid: str) -> Optional[SigningKey]:
        with self._lock:
            return self._keys.get(kid)

    def _insert(self, signing_key: SigningKey) -> None:
        with self._lock:
            self._keys[signing_key.kid] = signing_key

    async def _fetch_key_set(self) -> list[dict]:
        """Fetches the full key set and returns its JWK entries."""
        if not self.jwks_uri:
            _LOGGER.warning("Provider does not advertise a jwks_uri")
            raise DiscoveryError(
                type="missing_endpoint", details={"endpoint": "jwks_uri"}
            )

        jwks_data = await self.discovery_client.fetch_jwks(self.jwks_uri)
        keys = jwks_data.get("keys")
        if not isinstance(keys, list):
            _LOGGER.warning("JWKS from %s does not contain a keys list", self.jwks_uri)
            return []

        return [key for key in keys if isinstance(key, dict)]

    async def get_key(self, kid: str) -> SigningKey:
        """Returns the signing key for kid, fetching the key set on a miss."""
        signing_key = self._lookup(kid)
        if signing_key is not None:
            return signing_key

        for attempt in range(1, self.MAX_FETCHES + 1):
            if self.verbose_debug_mode:
                _LOGGER.debug(
                    "Key %s not cached, fetching JWKS (attempt %d of %d)",
                    kid,
                    attempt,
                    self.MAX_FETCHES,
                )

            keys = await self._fetch_key_set()
            jwk_data = next((key for key in keys if key.get("kid") == kid), None)
            if jwk_data is None:
                continue

            signing_key = SigningKey(kid=kid, key=jwk_to_rsa_key(jwk_data))
            self._insert(signing_key)
            _LOGGER.info("Cached signing key %s from %s", kid, self.jwks_uri)
            return signing_key

        _LOGGER.warning(
            "Key with kid %s not found in JWKS after %d fetches",
            kid,
            self.MAX_FETCHES,
        )
        raise UnknownKeyError(kid)
