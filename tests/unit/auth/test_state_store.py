"""Test ephemeral state stores (memory and filesystem)."""

import threading
import time

import pytest

from oidc_login.auth.state_store_factory import create_state_store
from oidc_login.auth.state_store_fs import FileSystemStateStore
from oidc_login.auth.state_store_memory import MemoryStateStore
from oidc_login.settings import StoreSettings


@pytest.fixture(params=["memory", "filesystem"])
def any_store(request, tmp_path):
    """Each backend with real time."""
    if request.param == "memory":
        return MemoryStateStore()
    return FileSystemStateStore(base_path=str(tmp_path / "state"))


# =================================================================
# Shared contract
# =================================================================


def test_take_once_is_single_use(any_store):
    """Test a value is returned once, then never again."""
    any_store.put("state:s1", {"is_test": False}, ttl_seconds=600)
    assert any_store.take_once("state:s1") == {"is_test": False}
    assert any_store.take_once("state:s1") is None


def test_get_does_not_consume(any_store):
    """Test get leaves the entry in place."""
    any_store.put("available_claims", {"sub": "x"}, ttl_seconds=60)
    assert any_store.get("available_claims") == {"sub": "x"}
    assert any_store.get("available_claims") == {"sub": "x"}


def test_missing_key(any_store):
    """Test unknown keys read as None."""
    assert any_store.get("nope") is None
    assert any_store.take_once("nope") is None
    assert any_store.delete("nope") is False


def test_delete(any_store):
    """Test delete removes the entry."""
    any_store.put("k", "v", ttl_seconds=60)
    assert any_store.delete("k") is True
    assert any_store.get("k") is None


def test_put_overwrites(any_store):
    """Test a second put replaces the value."""
    any_store.put("k", "first", ttl_seconds=60)
    any_store.put("k", "second", ttl_seconds=60)
    assert any_store.take_once("k") == "second"


def test_concurrent_take_once_has_one_winner(any_store):
    """Test racing callers on one state: exactly one gets the value."""
    any_store.put("state:race", {"state": "race"}, ttl_seconds=600)

    results = []
    barrier = threading.Barrier(8)

    def take():
        barrier.wait()
        results.append(any_store.take_once("state:race"))

    threads = [threading.Thread(target=take) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    winners = [result for result in results if result is not None]
    assert winners == [{"state": "race"}]


# =================================================================
# Expiry
# =================================================================


def test_memory_entry_expires_without_take(clock):
    """Test an entry with TTL 1s is gone after 2s."""
    store = MemoryStateStore(clock=clock)
    store.put("state:s1", {"state": "s1"}, ttl_seconds=1)

    clock.advance(2)

    assert store.get("state:s1") is None
    assert store.take_once("state:s1") is None


def test_memory_entry_alive_before_deadline(clock):
    """Test entries are readable until their deadline."""
    store = MemoryStateStore(clock=clock)
    store.put("k", "v", ttl_seconds=10)
    clock.advance(9.5)
    assert store.get("k") == "v"


def test_memory_purges_expired_on_write(clock):
    """Test expired entries are dropped, not just hidden."""
    store = MemoryStateStore(clock=clock)
    store.put("old", "v", ttl_seconds=1)
    clock.advance(5)
    store.put("new", "v", ttl_seconds=60)
    assert len(store) == 1


def test_filesystem_entry_expires(tmp_path):
    """Test filesystem entries honour their TTL."""
    store = FileSystemStateStore(base_path=str(tmp_path))
    store.put("state:s1", {"state": "s1"}, ttl_seconds=1)

    time.sleep(2)

    assert store.take_once("state:s1") is None
    assert list(tmp_path.glob("*.json")) == []


def test_filesystem_purge_expired(tmp_path):
    """Test purge_expired removes only stale files."""
    store = FileSystemStateStore(base_path=str(tmp_path), purge_interval=3600)
    store.put("stale", "v", ttl_seconds=0)
    store.put("fresh", "v", ttl_seconds=600)

    assert store.purge_expired() == 1
    assert store.get("fresh") == "v"


def test_filesystem_abandoned_entries_removed_by_later_writes(tmp_path):
    """Test expired entries nobody reads are swept by unrelated puts."""
    store = FileSystemStateStore(base_path=str(tmp_path))
    for i in range(5):
        store.put(f"state:abandoned-{i}", {"state": i}, ttl_seconds=0)

    for i in range(3):
        store.put(f"state:live-{i}", {"state": i}, ttl_seconds=600)
        assert store.take_once(f"state:live-{i}") == {"state": i}

    assert list(tmp_path.glob("*.json")) == []


def test_filesystem_purge_interval_throttles_sweeps(tmp_path):
    """Test sweeps run at most once per purge_interval."""
    store = FileSystemStateStore(base_path=str(tmp_path), purge_interval=3600)
    store.put("stale", "v", ttl_seconds=0)
    store.put("other", "v", ttl_seconds=600)

    assert len(list(tmp_path.glob("*.json"))) == 2


def test_filesystem_shared_between_instances(tmp_path):
    """Test two store instances (workers) see the same entries."""
    writer = FileSystemStateStore(base_path=str(tmp_path))
    reader = FileSystemStateStore(base_path=str(tmp_path))

    writer.put("state:abc", {"redirect_to": "/admin"}, ttl_seconds=600)

    assert reader.take_once("state:abc") == {"redirect_to": "/admin"}
    assert writer.take_once("state:abc") is None


def test_filesystem_corrupt_entry_reads_as_missing(tmp_path):
    """Test unreadable entries are treated as absent."""
    store = FileSystemStateStore(base_path=str(tmp_path))
    store.put("k", "v", ttl_seconds=60)
    path = next(tmp_path.glob("*.json"))
    path.write_text("{not json")

    assert store.get("k") is None
    assert store.take_once("k") is None


# =================================================================
# Factory
# =================================================================


def test_factory_backends(tmp_path):
    """Test factory selects backends by name."""
    assert isinstance(create_state_store(StoreSettings(backend="memory")), MemoryStateStore)
    fs = create_state_store(
        StoreSettings(backend="FileSystem", path=str(tmp_path), purge_interval=30)
    )
    assert isinstance(fs, FileSystemStateStore)
    assert fs.purge_interval == 30


def test_factory_rejects_unknown_backend():
    """Test invalid backend names raise ValueError."""
    with pytest.raises(ValueError, match="Invalid state store backend"):
        create_state_store(StoreSettings(backend="redis"))
