"""Filesystem-based state store implementation.

Stores each entry as a JSON file so several API workers on one host can
share pending authorizations. Filenames are SHA-256 digests of the key,
which keeps arbitrary keys (state tokens, fingerprints) filesystem-safe.
"""

import hashlib
import json
import os
import time
import uuid
from pathlib import Path
from typing import Any

from loguru import logger

from oidc_login.auth.state_store import StateStore


class FileSystemStateStore(StateStore):
    """Filesystem-based state store.

    Storage layout:
        {base_path}/{sha256(key)}.json  ->  {"key", "expires_at", "value"}

    Example:
        ~/.oidc-login/state/3b4c...e1.json

    ``take_once`` first renames the entry to a unique claim file. Rename is
    atomic on POSIX filesystems, so exactly one concurrent caller wins and
    the others see the entry as missing.
    """

    def __init__(self, base_path: str = "~/.oidc-login/state", purge_interval: float = 0.0):
        """Initialize filesystem state store.

        Args:
            base_path: Directory holding entry files
            purge_interval: Minimum seconds between expiry sweeps run by
                ``put`` (0 sweeps on every write)
        """
        self.base_path = Path(os.path.expanduser(base_path))
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.purge_interval = purge_interval
        self._last_purge = float("-inf")
        logger.info(f"FileSystemStateStore initialized: {self.base_path}")

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        now = time.monotonic()
        if now - self._last_purge >= self.purge_interval:
            self._last_purge = now
            self.purge_expired()

        path = self._key_path(key)
        tmp_path = path.with_suffix(f".{uuid.uuid4().hex}.tmp")
        record = {"key": key, "expires_at": time.time() + ttl_seconds, "value": value}

        try:
            with open(tmp_path, "w") as f:
                json.dump(record, f)
            os.replace(tmp_path, path)
        except Exception as e:
            logger.error(f"Failed to write state entry {path.name}: {e}")
            tmp_path.unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Any | None:
        path = self._key_path(key)
        record = self._read(path)
        if record is None:
            return None
        if time.time() >= record.get("expires_at", 0):
            path.unlink(missing_ok=True)
            return None
        return record.get("value")

    def take_once(self, key: str) -> Any | None:
        path = self._key_path(key)
        claimed = path.with_suffix(f".{uuid.uuid4().hex}.taken")

        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            return None

        try:
            record = self._read(claimed)
        finally:
            claimed.unlink(missing_ok=True)

        if record is None or time.time() >= record.get("expires_at", 0):
            return None
        return record.get("value")

    def delete(self, key: str) -> bool:
        path = self._key_path(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def purge_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        removed = 0
        now = time.time()
        for path in self.base_path.glob("*.json"):
            record = self._read(path)
            if record is not None and now < record.get("expires_at", 0):
                continue
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.debug(f"Purged {removed} expired state entries")
        return removed

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            with open(path, "r") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read state entry {path.name}: {e}")
            return None
        return record if isinstance(record, dict) else None

    def _key_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.base_path / f"{digest}.json"
