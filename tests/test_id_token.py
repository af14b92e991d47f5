"""Tests for ID token validation against the mocked provider"""

from contextlib import asynccontextmanager
import time

import pytest
from joserfc import jws
from joserfc.jwk import RSAKey

from civic_auth.tools.exceptions import (
    AccessTokenHashMismatchError,
    AudienceMismatchError,
    DiscoveryError,
    IDTokenValidationError,
    IssuerMismatchError,
    KeySetFetchError,
    MalformedTokenError,
    NonceMismatchError,
    SignatureError,
    SigningAlgorithmError,
    TokenExpiredError,
    UnknownKeyError,
)
from civic_auth.tools.helpers import compute_at_hash
from civic_auth.tools.oidc_client import OIDCClient

from .mocks.oidc_server import (
    BASE_URL,
    CLIENT_ID,
    client_config,
    encode_unsigned_token,
    generate_signing_key,
    mock_oidc_responses,
)


@asynccontextmanager
async def mocked_client(scenario: str | None = None):
    """Yield the mock server and a discovered client."""
    with mock_oidc_responses(scenario) as (server, _get_patch, _post_patch):
        client = await OIDCClient.async_create(client_config())
        try:
            yield server, client
        finally:
            await client.async_close()


@pytest.mark.asyncio
async def test_valid_id_token():
    """Test that a valid token returns its claims."""
    async with mocked_client() as (server, client):
        claims = await client.async_validate_id_token(server.create_id_token())

        assert claims.iss == BASE_URL
        assert claims.sub == "1234567890"
        assert claims.aud == CLIENT_ID
        assert claims.name == "Test User"
        assert claims.email == "test@example.com"
        assert claims.raw["sub"] == "1234567890"
        assert server.jwks_fetch_count == 1


@pytest.mark.asyncio
async def test_cached_key_is_not_refetched():
    """Test that a known kid is served from the cache."""
    async with mocked_client() as (server, client):
        for _ in range(3):
            await client.async_validate_id_token(server.create_id_token())

        assert server.jwks_fetch_count == 1
        assert server.signing_key.kid in client.id_token_validator.key_cache


@pytest.mark.parametrize(
    ("claims", "error"),
    [
        ({"exp": int(time.time()) - 10}, TokenExpiredError),
        ({"exp": None}, TokenExpiredError),
        ({"exp": "tomorrow"}, TokenExpiredError),
        ({"iss": "https://evil.example.net"}, IssuerMismatchError),
        ({"iss": f"{BASE_URL}/"}, IssuerMismatchError),
        ({"aud": "otherclient"}, AudienceMismatchError),
        ({"aud": ["otherclient"]}, AudienceMismatchError),
        ({"aud": None}, AudienceMismatchError),
    ],
)
@pytest.mark.asyncio
async def test_invalid_claims(claims, error):
    """Test that each claim check rejects the token."""
    async with mocked_client() as (server, client):
        with pytest.raises(error) as exc_info:
            await client.async_validate_id_token(server.create_id_token(**claims))

    assert isinstance(exc_info.value, IDTokenValidationError)


@pytest.mark.asyncio
async def test_mismatch_errors_carry_values():
    """Test that issuer and audience errors expose expected and actual."""
    async with mocked_client() as (server, client):
        with pytest.raises(IssuerMismatchError) as issuer_info:
            await client.async_validate_id_token(
                server.create_id_token(iss="https://evil.example.net")
            )
        with pytest.raises(AudienceMismatchError) as audience_info:
            await client.async_validate_id_token(
                server.create_id_token(aud="otherclient")
            )

    assert issuer_info.value.expected == BASE_URL
    assert issuer_info.value.actual == "https://evil.example.net"
    assert audience_info.value.expected == CLIENT_ID
    assert audience_info.value.actual == "otherclient"


@pytest.mark.asyncio
async def test_audience_array_with_client_id():
    """Test that an audience array containing the client id is accepted."""
    async with mocked_client() as (server, client):
        claims = await client.async_validate_id_token(
            server.create_id_token(aud=["otherclient", CLIENT_ID])
        )

    assert claims.aud == ["otherclient", CLIENT_ID]


@pytest.mark.asyncio
async def test_expiry_uses_given_time():
    """Test that validation time can be supplied by the caller."""
    async with mocked_client() as (server, client):
        token = server.create_id_token(exp=1000)

        claims = await client.id_token_validator.validate(token, now=999)
        assert claims.exp == 1000

        with pytest.raises(TokenExpiredError) as exc_info:
            await client.id_token_validator.validate(token, now=1000)

    assert exc_info.value.expires_at == 1000


@pytest.mark.parametrize("alg", ["HS256", "none", "ES256", "RS1"])
@pytest.mark.asyncio
async def test_disallowed_algorithm_is_rejected_before_key_lookup(alg):
    """Test that only RSA algorithms are accepted and no keys are fetched."""
    async with mocked_client() as (server, client):
        token = encode_unsigned_token(
            {"alg": alg, "kid": server.signing_key.kid}, {"sub": "1234567890"}
        )

        with pytest.raises(SigningAlgorithmError) as exc_info:
            await client.async_validate_id_token(token)

        assert exc_info.value.alg == alg
        assert server.jwks_fetch_count == 0


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-token",
        "a.b.c",
        encode_unsigned_token({"alg": "RS256"}, {"sub": "1234567890"}),
        encode_unsigned_token({"kid": "abc"}, {"sub": "1234567890"}),
    ],
)
@pytest.mark.asyncio
async def test_malformed_token(token):
    """Test that unparseable tokens and incomplete headers are malformed."""
    async with mocked_client() as (server, client):
        with pytest.raises(MalformedTokenError):
            await client.async_validate_id_token(token)

        assert server.jwks_fetch_count == 0


@pytest.mark.asyncio
async def test_wrong_key_with_known_kid():
    """Test that a signature by another key under a known kid fails."""
    async with mocked_client() as (server, client):
        forged_key = RSAKey.generate_key(
            2048, {"kid": server.signing_key.kid}, private=True
        )

        with pytest.raises(SignatureError):
            await client.async_validate_id_token(
                server.create_id_token(key=forged_key)
            )


@pytest.mark.asyncio
async def test_tampered_payload():
    """Test that changing the payload of a signed token breaks its signature."""
    async with mocked_client() as (server, client):
        header, _payload, signature = server.create_id_token().split(".")
        _header, forged_payload, _signature = server.create_id_token(
            sub="attacker"
        ).split(".")

        with pytest.raises(SignatureError):
            await client.async_validate_id_token(
                f"{header}.{forged_payload}.{signature}"
            )


@pytest.mark.asyncio
async def test_unknown_kid_fetches_twice():
    """Test that an unknown kid triggers exactly one forced refetch."""
    async with mocked_client() as (server, client):
        unknown_key = generate_signing_key()

        with pytest.raises(UnknownKeyError) as exc_info:
            await client.async_validate_id_token(
                server.create_id_token(key=unknown_key)
            )

        assert exc_info.value.kid == unknown_key.kid
        assert server.jwks_fetch_count == 2


@pytest.mark.asyncio
async def test_rotated_key_found_on_refetch():
    """Test that a key published between two fetches is found."""
    async with mocked_client() as (server, client):
        await client.async_validate_id_token(server.create_id_token())
        assert server.jwks_fetch_count == 1

        server.rotate_key()
        server.hidden_key_fetches = 1

        claims = await client.async_validate_id_token(server.create_id_token())
        assert claims.sub == "1234567890"
        assert server.jwks_fetch_count == 3

        # Keys of earlier fetches stay cached
        assert len(client.id_token_validator.key_cache) == 2


@pytest.mark.asyncio
async def test_missing_jwks_uri():
    """Test that validation without a jwks_uri fails on the endpoint."""
    async with mocked_client("missing_jwks") as (server, client):
        with pytest.raises(DiscoveryError) as exc_info:
            await client.async_validate_id_token(server.create_id_token())

        assert server.jwks_fetch_count == 0

    assert exc_info.value.type == "missing_endpoint"
    assert exc_info.value.details == {"endpoint": "jwks_uri"}


@pytest.mark.asyncio
async def test_jwks_unavailable():
    """Test that a failing JWKS endpoint is a KeySetFetchError."""
    async with mocked_client("jwks_unavailable") as (server, client):
        with pytest.raises(KeySetFetchError):
            await client.async_validate_id_token(server.create_id_token())

        # A failed fetch is not retried
        assert server.jwks_fetch_count == 1


@pytest.mark.asyncio
async def test_nonce():
    """Test the nonce check of tokens from nonce bound requests."""
    async with mocked_client() as (server, client):
        token = server.create_id_token(nonce="n-0S6_WzA2Mj")

        claims = await client.async_validate_id_token(token, nonce="n-0S6_WzA2Mj")
        assert claims.nonce == "n-0S6_WzA2Mj"

        # Without an expected nonce the claim is not checked
        await client.async_validate_id_token(token)

        with pytest.raises(NonceMismatchError):
            await client.async_validate_id_token(token, nonce="other")
        with pytest.raises(NonceMismatchError):
            await client.async_validate_id_token(
                server.create_id_token(), nonce="n-0S6_WzA2Mj"
            )


@pytest.mark.asyncio
async def test_at_hash():
    """Test that at_hash binds the ID token to its access token."""
    async with mocked_client() as (server, client):
        token = server.create_id_token(at_hash=compute_at_hash("access123", "RS256"))

        claims = await client.async_validate_id_token(token, access_token="access123")
        assert claims.at_hash == compute_at_hash("access123", "RS256")

        with pytest.raises(AccessTokenHashMismatchError):
            await client.async_validate_id_token(token, access_token="other")

        # Tokens without at_hash are accepted with any access token
        await client.async_validate_id_token(
            server.create_id_token(), access_token="other"
        )


@pytest.mark.parametrize("payload", [b"[1,2]", b"[]"])
@pytest.mark.asyncio
async def test_signed_payload_not_an_object(payload):
    """Test that a correctly signed payload that is not a JSON object is malformed."""
    async with mocked_client() as (server, client):
        token = jws.serialize_compact(
            {"alg": "RS256", "kid": server.signing_key.kid},
            payload,
            server.signing_key,
        )

        with pytest.raises(MalformedTokenError):
            await client.async_validate_id_token(token)
