"""Abstract ephemeral state store interface.

Short-lived key-value storage with TTL semantics, used for:
- "state:{token}": pending authorization requests (CSRF state)
- "test_claims:{user_id}": claims from a test login, read once
- "available_claims": last seen claims, for mapping suggestions
- "login_error:{fingerprint}": login error message shown once
- "logout:{fingerprint}": single-logout marker

Implementations:
- MemoryStateStore: process-local dict (default, tests)
- FileSystemStateStore: JSON files on disk, shared between workers
"""

from abc import ABC, abstractmethod
from typing import Any


class StateStore(ABC):
    """Abstract interface for TTL-scoped ephemeral storage.

    Expired entries are never returned. ``take_once`` is the only way to
    consume security-sensitive entries: it must hand a value to at most one
    caller, even when several callers race on the same key.
    """

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable value for ``ttl_seconds``.

        Args:
            key: Entry key
            value: Value to store
            ttl_seconds: Lifetime in seconds
        """
        pass

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Read a value without consuming it.

        Args:
            key: Entry key

        Returns:
            Value if present and not expired, None otherwise
        """
        pass

    @abstractmethod
    def take_once(self, key: str) -> Any | None:
        """Atomically read and delete a value.

        Args:
            key: Entry key

        Returns:
            Value if present and not expired, None otherwise (including when
            another caller already took it)
        """
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a value.

        Args:
            key: Entry key

        Returns:
            True if deleted, False if not found
        """
        pass
