"""Explicit wiring of the team memory services.

Everything a process needs is built once from a TeamMemoryConfig and passed
around; nothing is kept in module globals.
"""

from typing import Dict, Optional

from .backends import CacheBackend, ContentAddressedBackend, FileBackend, MemoryBackend, StorageBackend
from .conflicts import TeamLocks
from .config import TeamMemoryConfig
from .constants import BackendTag
from .log import get_logger
from .memory_store import EmbeddingProvider, MemoryStore
from .progress import LearningProgressService
from .redis_factory import redis_client_for
from .registry import TeamRegistry
from .scheduler import Clock, SyncScheduler
from .sharing import KnowledgeSharingService
from .storage import StorageManager
from .telemetry import TeamMemoryMetrics

logger = get_logger(__name__)


def build_backends(config: TeamMemoryConfig, redis_client=None) -> Dict[str, StorageBackend]:
    """Instantiate the backends the storage config routes to.

    ``redis_client`` replaces the client that would otherwise be created
    from ``storage.redis_url`` (tests pass a fakeredis instance).
    """
    storage = config.storage
    backends: Dict[str, StorageBackend] = {}
    for tag in storage.backend_tags:
        if tag == BackendTag.CACHE:
            client = redis_client if redis_client is not None else redis_client_for(storage)
            backends[tag] = CacheBackend(client, prefix=storage.redis_prefix)
        elif tag == BackendTag.FILE:
            backends[tag] = FileBackend(storage.base_path)
        elif tag == BackendTag.CONTENT:
            backends[tag] = ContentAddressedBackend(storage.resolved_content_path)
        elif tag == BackendTag.MEMORY:
            backends[tag] = MemoryBackend()
    return backends


class TeamMemoryContext:
    """Holds one instance's storage, registry, memory store and services.

    Usage:
        ctx = TeamMemoryContext.from_config(TeamMemoryConfig.from_env())
        ctx.registry.create_team("frontend", {"name": "Frontend"})
        ctx.memory_store.remember("frontend", "react-hooks", confidence=0.9)
        ctx.scheduler.sync_all()
        ctx.close()
    """

    def __init__(
        self,
        config: TeamMemoryConfig,
        storage: StorageManager,
        embedder: Optional[EmbeddingProvider] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config
        self.storage = storage
        self.metrics = storage.metrics
        self.locks = TeamLocks()

        replicate = config.storage.replicate
        self.registry = TeamRegistry(storage, replicate=replicate)
        self.memory_store = MemoryStore(
            storage,
            self.registry,
            conflict_window=config.conflict_window,
            replicate=replicate,
            embedder=embedder,
            locks=self.locks,
            metrics=self.metrics,
        )
        self.scheduler = SyncScheduler(
            self.registry,
            self.memory_store,
            interval=config.sync_interval,
            clock=clock,
            max_workers=config.sync_workers,
            metrics=self.metrics,
        )
        self.sharing = KnowledgeSharingService(self.registry, self.memory_store)
        self.progress = LearningProgressService(
            self.memory_store,
            self.registry,
            mastery_threshold=config.mastery_threshold,
            last_sync=self.scheduler.last_sync,
        )

    @classmethod
    def from_config(
        cls,
        config: TeamMemoryConfig,
        redis_client=None,
        embedder: Optional[EmbeddingProvider] = None,
        clock: Optional[Clock] = None
    ) -> 'TeamMemoryContext':
        storage_config = config.storage
        storage = StorageManager(
            build_backends(config, redis_client),
            primary=storage_config.primary,
            fallback=storage_config.fallback,
            reference_backend=storage_config.reference_backend,
            enable_cache=storage_config.enable_cache,
            timeout=storage_config.timeout,
            max_workers=storage_config.max_workers,
            metrics=TeamMemoryMetrics(),
        )
        logger.info("Team memory storage ready: primary=%s fallback=%s",
                    storage.primary, storage.fallback)
        return cls(config, storage, embedder=embedder, clock=clock)

    def close(self) -> None:
        self.scheduler.stop()
        self.storage.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
