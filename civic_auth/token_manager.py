"""Token lifecycle, serves stored tokens and refreshes them through the provider."""

import dataclasses
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .stores.token_store import TokenStorage
from .tools.oidc_client import OIDCClient
from .tools.types import TokenSet

_LOGGER = logging.getLogger(__name__)


def is_token_expired(
    token_set: TokenSet, issued_at: datetime, now: Optional[datetime] = None
) -> bool:
    """Checks if a token set is expired based on its expires_in value.

    Token sets without expiry information never count as expired.
    """
    if token_set.expires_in <= 0:
        return False

    if now is None:
        now = datetime.now(timezone.utc) if issued_at.tzinfo else datetime.now()

    return now > issued_at + timedelta(seconds=token_set.expires_in)


class TokenRefreshManager:
    """Hands out tokens for users, refreshing them before they are returned.

    Concurrent calls for the same user are not serialized here, the provider
    may invalidate the refresh token used by the first of them.
    """

    def __init__(self, client: OIDCClient, storage: TokenStorage) -> None:
        self.client = client
        self.storage = storage

    async def async_save_tokens(self, user_id: str, token_set: TokenSet) -> None:
        """Saves the tokens obtained by a code exchange."""
        await self.storage.async_store(user_id, token_set)

    async def async_logout(self, user_id: str) -> None:
        """Forgets the tokens of a user."""
        await self.storage.async_delete(user_id)

    async def async_get_valid_token(self, user_id: str) -> TokenSet:
        """Returns the user's tokens, refreshed if a refresh token is available."""
        tokens = await self.storage.async_retrieve(user_id)

        if not tokens.refresh_token:
            return tokens

        # Refreshes on every call, the access token's lifetime is not consulted
        _LOGGER.debug("Refreshing tokens for user %s", user_id)
        new_tokens = await self.client.async_refresh(tokens.refresh_token)

        # Providers commonly omit an unchanged refresh token
        if not new_tokens.refresh_token:
            new_tokens = dataclasses.replace(
                new_tokens, refresh_token=tokens.refresh_token
            )

        await self.storage.async_store(user_id, new_tokens)
        return new_tokens
