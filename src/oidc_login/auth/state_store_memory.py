"""In-memory state store.

Process-local and lock-protected. Suitable for single-worker deployments
and tests; use FileSystemStateStore when several workers share callbacks.
"""

import threading
import time
from collections.abc import Callable
from typing import Any

from oidc_login.auth.state_store import StateStore


class MemoryStateStore(StateStore):
    """Dict-backed state store with lazy expiry.

    Entries are purged when read after their deadline and on every write.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize memory store.

        Args:
            clock: Monotonic time source (injectable for tests)
        """
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._entries[key] = (now + ttl_seconds, value)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def take_once(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return None
            expires_at, value = entry
            return value if self._clock() < expires_at else None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
