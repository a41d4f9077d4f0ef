"""Shared pytest fixtures for team memory tests."""

import sys
import threading
from pathlib import Path

import fakeredis
import pytest

# Add lib directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "lib"))

from teammem.backends import CacheBackend, ContentAddressedBackend, FileBackend, MemoryBackend, StorageBackend
from teammem.conflicts import TeamLocks
from teammem.errors import BackendError
from teammem.memory_store import MemoryStore
from teammem.registry import TeamRegistry
from teammem.scheduler import ManualClock, SyncScheduler
from teammem.sharing import KnowledgeSharingService
from teammem.storage import StorageManager
from teammem.telemetry import TeamMemoryMetrics


class FailingBackend(StorageBackend):
    """Backend that refuses (or stalls on) every call while ``down`` is set."""

    tag = "cache"

    def __init__(self, delegate: StorageBackend = None, stall: float = 0.0):
        self.delegate = delegate or MemoryBackend()
        self.down = True
        self.stall = stall
        self.calls = 0
        self._release = threading.Event()

    def _guard(self, op):
        self.calls += 1
        if self.down:
            if self.stall:
                self._release.wait(self.stall)
            raise BackendError(f"{op} refused: backend down", backend=self.tag)

    def put(self, key, data, ttl=None):
        self._guard("put")
        return self.delegate.put(key, data, ttl)

    def get(self, key):
        self._guard("get")
        return self.delegate.get(key)

    def delete(self, key):
        self._guard("delete")
        return self.delegate.delete(key)

    def index_add(self, namespace, member):
        self._guard("index_add")
        return self.delegate.index_add(namespace, member)

    def index_remove(self, namespace, member):
        self._guard("index_remove")
        return self.delegate.index_remove(namespace, member)

    def index_members(self, namespace):
        self._guard("index_members")
        return self.delegate.index_members(namespace)

    def ping(self):
        return not self.down

    def release(self):
        self._release.set()


@pytest.fixture
def fake_server():
    """Shared fakeredis server; set ``connected = False`` to simulate an outage."""
    return fakeredis.FakeServer()


@pytest.fixture
def mock_redis(fake_server):
    """Create a fake Redis client returning bytes, like the production client."""
    return fakeredis.FakeStrictRedis(server=fake_server)


@pytest.fixture
def cache_backend(mock_redis):
    return CacheBackend(mock_redis)


@pytest.fixture
def file_backend(tmp_path):
    return FileBackend(str(tmp_path / "files"))


@pytest.fixture
def content_backend(tmp_path):
    return ContentAddressedBackend(str(tmp_path / "content"))


@pytest.fixture
def metrics():
    return TeamMemoryMetrics()


@pytest.fixture
def storage(cache_backend, file_backend, metrics):
    """Cache primary with file fallback (the centralized preset)."""
    manager = StorageManager(
        {"cache": cache_backend, "file": file_backend},
        primary="cache",
        fallback="file",
        timeout=2.0,
        metrics=metrics,
    )
    yield manager
    manager.close()


@pytest.fixture
def registry(storage):
    return TeamRegistry(storage)


@pytest.fixture
def locks():
    return TeamLocks()


@pytest.fixture
def memory_store(storage, registry, locks):
    return MemoryStore(storage, registry, conflict_window=60.0, locks=locks)


@pytest.fixture
def clock():
    return ManualClock(start=1000.0)


@pytest.fixture
def scheduler(registry, memory_store, clock):
    return SyncScheduler(registry, memory_store, interval=300.0, clock=clock)


@pytest.fixture
def sharing(registry, memory_store):
    return KnowledgeSharingService(registry, memory_store)


@pytest.fixture
def team(registry):
    """A team named "frontend" with one admin."""
    created = registry.create_team("frontend", {"name": "Frontend", "learning_domains": ["react"]})
    registry.add_member("frontend", "alice", "admin")
    return created


@pytest.fixture
def failing_backend():
    backend = FailingBackend()
    yield backend
    backend.release()


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "p0: critical tests")
    config.addinivalue_line("markers", "p1: important tests")
    config.addinivalue_line("markers", "p2: nice-to-have tests")
    config.addinivalue_line("markers", "integration: multi-component tests")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
