"""Token Store, holds the latest token set of every user."""

import abc
import dataclasses
import logging

from ..tools.exceptions import InvalidUserIDError, NotFoundError
from ..tools.types import TokenSet
from ..tools.validation import validate_user_id

_LOGGER = logging.getLogger(__name__)


class TokenStorage(abc.ABC):
    """Storage collaborator for token sets, keyed by an opaque user id.

    Implementations must reject an empty user id in every operation.
    """

    @abc.abstractmethod
    async def async_store(self, user_id: str, token_set: TokenSet) -> None:
        """Stores (or overwrites) the token set of a user."""

    @abc.abstractmethod
    async def async_retrieve(self, user_id: str) -> TokenSet:
        """Returns the token set of a user, raises NotFoundError if there is none."""

    @abc.abstractmethod
    async def async_delete(self, user_id: str) -> None:
        """Removes the token set of a user."""


def ensure_user_id(user_id: str) -> None:
    """Raises InvalidUserIDError for an empty user id."""
    if not validate_user_id(user_id):
        raise InvalidUserIDError()


class InMemoryTokenStorage(TokenStorage):
    """Holds the token sets in memory, for tests and single process use"""

    def __init__(self) -> None:
        self._data: dict[str, TokenSet] = {}

    def get_data(self) -> dict[str, TokenSet]:
        """Returns the stored token sets."""
        return self._data

    async def async_store(self, user_id: str, token_set: TokenSet) -> None:
        ensure_user_id(user_id)
        # Keep our own copy, callers own the object they passed in
        self._data[user_id] = dataclasses.replace(token_set)

    async def async_retrieve(self, user_id: str) -> TokenSet:
        ensure_user_id(user_id)
        token_set = self._data.get(user_id)
        if token_set is None:
            raise NotFoundError(user_id)
        return dataclasses.replace(token_set)

    async def async_delete(self, user_id: str) -> None:
        ensure_user_id(user_id)
        if self._data.pop(user_id, None) is not None:
            _LOGGER.debug("Deleted tokens for user %s", user_id)
