"""Factory for state store backends.

Creates the StateStore implementation named in settings.
"""

from loguru import logger

from oidc_login.auth.state_store import StateStore
from oidc_login.auth.state_store_fs import FileSystemStateStore
from oidc_login.auth.state_store_memory import MemoryStateStore
from oidc_login.settings import StoreSettings


def create_state_store(store_settings: StoreSettings) -> StateStore:
    """Create a state store.

    Args:
        store_settings: Store configuration (STORE__BACKEND)

    Returns:
        StateStore implementation

    Raises:
        ValueError: If the backend name is invalid
    """
    backend = store_settings.backend.lower()

    if backend == "memory":
        logger.info("Initializing MemoryStateStore")
        return MemoryStateStore()

    if backend == "filesystem":
        logger.info("Initializing FileSystemStateStore")
        return FileSystemStateStore(
            base_path=store_settings.path,
            purge_interval=store_settings.purge_interval,
        )

    raise ValueError(
        f"Invalid state store backend: {backend}. "
        f"Valid options: memory, filesystem"
    )
