"""Local identities and the user repository interface.

The login flow only needs a handful of lookups and writes, so storage is
abstracted behind UserRepository:
- MemoryUserRepository: dict-backed (default, tests)
- FileSystemUserRepository: one JSON file per user
"""

import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from oidc_login.auth.errors import RepositoryError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Identity(BaseModel):
    """Local user record created from provider claims.

    Keyed by the provider subject; carries mapped profile fields, the
    assigned role, custom attributes, and audit metadata.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Local user ID")
    username: str = Field(description="Unique local username")
    email: str = Field(description="Email (placeholder when the provider sent none)")
    first_name: str = Field(default="", description="Given name")
    last_name: str = Field(default="", description="Family name")
    display_name: str = Field(default="", description="Display name")
    role: str = Field(description="Assigned local role")
    subject: str = Field(default="", description="Provider subject (sub claim)")
    claims: dict[str, Any] = Field(default_factory=dict, description="Last seen claims")
    attributes: dict[str, str] = Field(
        default_factory=dict, description="Custom attributes mapped from claims"
    )
    created_at: datetime = Field(default_factory=utc_now)
    last_login: datetime | None = Field(default=None, description="Last successful login")


class UserRepository(ABC):
    """Abstract user storage used by the identity resolver."""

    @abstractmethod
    def get(self, user_id: str) -> Identity | None:
        """Get a user by local ID."""
        pass

    @abstractmethod
    def find_by_subject(self, subject: str) -> Identity | None:
        """Find the user linked to a provider subject."""
        pass

    @abstractmethod
    def find_by_email(self, email: str) -> Identity | None:
        """Find a user by email (case-insensitive)."""
        pass

    @abstractmethod
    def find_by_username(self, username: str) -> Identity | None:
        """Find a user by exact username."""
        pass

    @abstractmethod
    def add(self, identity: Identity) -> Identity:
        """Persist a new user.

        Raises:
            RepositoryError: Username or ID already taken, or storage failed
        """
        pass

    @abstractmethod
    def save(self, identity: Identity) -> Identity:
        """Persist changes to an existing user.

        Raises:
            RepositoryError: User unknown or storage failed
        """
        pass

    def username_exists(self, username: str) -> bool:
        return self.find_by_username(username) is not None


class MemoryUserRepository(UserRepository):
    """Dict-backed user repository."""

    def __init__(self, users: list[Identity] | None = None):
        self._users: dict[str, Identity] = {}
        self._lock = threading.Lock()
        for identity in users or []:
            self._users[identity.id] = identity.model_copy(deep=True)

    def get(self, user_id: str) -> Identity | None:
        with self._lock:
            identity = self._users.get(user_id)
            return identity.model_copy(deep=True) if identity else None

    def find_by_subject(self, subject: str) -> Identity | None:
        if not subject:
            return None
        return self._find(lambda identity: identity.subject == subject)

    def find_by_email(self, email: str) -> Identity | None:
        if not email:
            return None
        email = email.lower()
        return self._find(lambda identity: identity.email.lower() == email)

    def find_by_username(self, username: str) -> Identity | None:
        if not username:
            return None
        return self._find(lambda identity: identity.username == username)

    def add(self, identity: Identity) -> Identity:
        with self._lock:
            if identity.id in self._users:
                raise RepositoryError(f"User {identity.id} already exists")
            if any(user.username == identity.username for user in self._users.values()):
                raise RepositoryError(f"Username {identity.username} is already taken")
            self._users[identity.id] = identity.model_copy(deep=True)
        return identity

    def save(self, identity: Identity) -> Identity:
        with self._lock:
            if identity.id not in self._users:
                raise RepositoryError(f"User {identity.id} does not exist")
            self._users[identity.id] = identity.model_copy(deep=True)
        return identity

    def all(self) -> list[Identity]:
        with self._lock:
            return [identity.model_copy(deep=True) for identity in self._users.values()]

    def _find(self, predicate) -> Identity | None:
        with self._lock:
            for identity in self._users.values():
                if predicate(identity):
                    return identity.model_copy(deep=True)
        return None


class FileSystemUserRepository(UserRepository):
    """Filesystem-based user repository.

    Storage layout:
        {base_path}/{user_id}.json

    Lookups scan the directory, which is fine for the small user counts of
    a single-site deployment.
    """

    def __init__(self, base_path: str = "~/.oidc-login/users"):
        """Initialize filesystem user repository.

        Args:
            base_path: Directory holding user files
        """
        self.base_path = Path(os.path.expanduser(base_path))
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"FileSystemUserRepository initialized: {self.base_path}")

    def get(self, user_id: str) -> Identity | None:
        return self._read(self._user_path(user_id))

    def find_by_subject(self, subject: str) -> Identity | None:
        if not subject:
            return None
        return self._find(lambda identity: identity.subject == subject)

    def find_by_email(self, email: str) -> Identity | None:
        if not email:
            return None
        email = email.lower()
        return self._find(lambda identity: identity.email.lower() == email)

    def find_by_username(self, username: str) -> Identity | None:
        if not username:
            return None
        return self._find(lambda identity: identity.username == username)

    def add(self, identity: Identity) -> Identity:
        with self._lock:
            if self._user_path(identity.id).exists():
                raise RepositoryError(f"User {identity.id} already exists")
            if self.username_exists(identity.username):
                raise RepositoryError(f"Username {identity.username} is already taken")
            self._write(identity)
        return identity

    def save(self, identity: Identity) -> Identity:
        with self._lock:
            if not self._user_path(identity.id).exists():
                raise RepositoryError(f"User {identity.id} does not exist")
            self._write(identity)
        return identity

    def _find(self, predicate) -> Identity | None:
        for path in sorted(self.base_path.glob("*.json")):
            identity = self._read(path)
            if identity is not None and predicate(identity):
                return identity
        return None

    def _read(self, path: Path) -> Identity | None:
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return Identity.model_validate(json.load(f))
        except Exception as e:
            logger.error(f"Failed to read {path}: {e}")
            return None

    def _write(self, identity: Identity) -> None:
        path = self._user_path(identity.id)
        try:
            with open(path, "w") as f:
                f.write(identity.model_dump_json(indent=2))
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise RepositoryError("User could not be saved") from e

    def _user_path(self, user_id: str) -> Path:
        return self.base_path / f"{user_id}.json"


def create_user_repository(backend: str, path: str) -> UserRepository:
    """Create the user repository named in settings.

    Raises:
        ValueError: If the backend name is invalid
    """
    backend = backend.lower()
    if backend == "memory":
        logger.info("Initializing MemoryUserRepository")
        return MemoryUserRepository()
    if backend == "filesystem":
        logger.info("Initializing FileSystemUserRepository")
        return FileSystemUserRepository(base_path=path)
    raise ValueError(
        f"Invalid user repository backend: {backend}. "
        f"Valid options: memory, filesystem"
    )
