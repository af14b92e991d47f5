"""Tests for the token lifecycle manager"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from civic_auth.stores.token_store import InMemoryTokenStorage
from civic_auth.token_manager import TokenRefreshManager, is_token_expired
from civic_auth.tools.exceptions import NotFoundError, RefreshError
from civic_auth.tools.oidc_client import OIDCClient
from civic_auth.tools.types import TokenSet

from .mocks.oidc_server import client_config, mock_oidc_responses


def make_manager(refreshed: TokenSet | Exception | None = None):
    """Return a manager whose client refreshes to the given result."""
    client = MagicMock(spec=OIDCClient)
    if isinstance(refreshed, Exception):
        client.async_refresh = AsyncMock(side_effect=refreshed)
    else:
        client.async_refresh = AsyncMock(return_value=refreshed)
    return TokenRefreshManager(client, InMemoryTokenStorage())


@pytest.mark.asyncio
async def test_tokens_without_refresh_token_are_returned_as_stored():
    """Test that no refresh is attempted without a refresh token."""
    manager = make_manager()
    tokens = TokenSet(access_token="access", expires_in=1)
    await manager.async_save_tokens("user1", tokens)

    assert await manager.async_get_valid_token("user1") == tokens
    manager.client.async_refresh.assert_not_called()


@pytest.mark.asyncio
async def test_tokens_are_refreshed_and_stored():
    """Test that refreshed tokens replace the stored ones."""
    refreshed = TokenSet(
        access_token="access-2", refresh_token="refresh-2", expires_in=3600
    )
    manager = make_manager(refreshed)
    await manager.async_save_tokens(
        "user1", TokenSet(access_token="access-1", refresh_token="refresh-1")
    )

    result = await manager.async_get_valid_token("user1")

    manager.client.async_refresh.assert_awaited_once_with("refresh-1")
    assert result == refreshed
    assert await manager.storage.async_retrieve("user1") == refreshed


@pytest.mark.asyncio
async def test_refresh_token_is_kept_when_not_rotated():
    """Test that an omitted refresh token in the response keeps the old one."""
    manager = make_manager(TokenSet(access_token="access-2"))
    await manager.async_save_tokens(
        "user1", TokenSet(access_token="access-1", refresh_token="refresh-1")
    )

    result = await manager.async_get_valid_token("user1")

    assert result.access_token == "access-2"
    assert result.refresh_token == "refresh-1"
    assert (await manager.storage.async_retrieve("user1")).refresh_token == (
        "refresh-1"
    )


@pytest.mark.asyncio
async def test_refresh_failure_leaves_storage_untouched():
    """Test that a failed refresh propagates and keeps the stored tokens."""
    manager = make_manager(RefreshError("refresh_token request failed", status=400))
    tokens = TokenSet(access_token="access-1", refresh_token="refresh-1")
    await manager.async_save_tokens("user1", tokens)

    with pytest.raises(RefreshError):
        await manager.async_get_valid_token("user1")

    assert await manager.storage.async_retrieve("user1") == tokens


@pytest.mark.asyncio
async def test_unknown_user():
    """Test that a user without tokens is not found."""
    manager = make_manager()

    with pytest.raises(NotFoundError):
        await manager.async_get_valid_token("nobody")


@pytest.mark.asyncio
async def test_logout():
    """Test that logout removes the stored tokens."""
    manager = make_manager()
    await manager.async_save_tokens("user1", TokenSet(access_token="access"))

    await manager.async_logout("user1")

    with pytest.raises(NotFoundError):
        await manager.async_get_valid_token("user1")


@pytest.mark.asyncio
async def test_refresh_against_provider():
    """Test the full code exchange and refresh against the mocked provider."""
    with mock_oidc_responses() as (server, _get_patch, post_patch):
        async with await OIDCClient.async_create(client_config()) as client:
            manager = TokenRefreshManager(client, InMemoryTokenStorage())

            flow = client.create_authorization_flow()
            tokens = await client.async_exchange_code(
                server.authorize(flow.url), flow.code_verifier
            )
            await manager.async_save_tokens("user1", tokens)

            first = await manager.async_get_valid_token("user1")
            second = await manager.async_get_valid_token("user1")

            # Every call refreshes, each with the latest rotated token
            assert post_patch.call_count == 3
            assert first.access_token != tokens.access_token
            assert second.access_token != first.access_token
            assert post_patch.call_args.kwargs["data"]["refresh_token"] == (
                first.refresh_token
            )


@pytest.mark.asyncio
async def test_refresh_against_provider_without_rotation():
    """Test that a provider omitting the refresh token keeps the session alive."""
    with mock_oidc_responses() as (server, _get_patch, _post_patch):
        async with await OIDCClient.async_create(client_config()) as client:
            manager = TokenRefreshManager(client, InMemoryTokenStorage())

            flow = client.create_authorization_flow()
            tokens = await client.async_exchange_code(
                server.authorize(flow.url), flow.code_verifier
            )
            await manager.async_save_tokens("user1", tokens)
            server.omit_refresh_token = True

            first = await manager.async_get_valid_token("user1")
            second = await manager.async_get_valid_token("user1")

    assert first.refresh_token == tokens.refresh_token
    assert second.refresh_token == tokens.refresh_token


def test_is_token_expired():
    """Test expiry based on expires_in and the issue time."""
    issued_at = datetime(2024, 1, 1, 12, 0, 0)
    tokens = TokenSet(access_token="access", expires_in=3600)

    assert not is_token_expired(tokens, issued_at, now=issued_at)
    assert not is_token_expired(
        tokens, issued_at, now=issued_at + timedelta(seconds=3600)
    )
    assert is_token_expired(tokens, issued_at, now=issued_at + timedelta(seconds=3601))


def test_is_token_expired_without_expiry():
    """Test that tokens without expires_in never expire."""
    tokens = TokenSet(access_token="access")

    assert not is_token_expired(tokens, datetime(2000, 1, 1, tzinfo=timezone.utc))


def test_is_token_expired_defaults_to_now():
    """Test that the current time is used when none is given."""
    tokens = TokenSet(access_token="access", expires_in=60)

    assert is_token_expired(
        tokens, datetime.now(timezone.utc) - timedelta(minutes=5)
    )
    assert not is_token_expired(tokens, datetime.now())
