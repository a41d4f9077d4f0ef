"""Memory Store - team-partitioned learning memories

Provides team-scoped persistence for learning memories, understanding
snapshots, conflicts and insights on top of the storage manager. Each team
owns one partition per entity type; partitions are listed through their
index, never by scanning keys.
"""

import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .conflicts import ConflictResolver, TeamLocks
from .constants import Defaults, StorageKeys
from .errors import NotFound, SerializationError
from .log import get_logger
from .progress import extract_domain
from .registry import TeamRegistry
from .storage import StorageManager
from .telemetry import TeamMemoryMetrics
from .types import (
    LearningMemory,
    MemoryConflict,
    MemoryContext,
    TeamLearningInsight,
    UnderstandingSnapshot,
)

logger = get_logger(__name__)

T = TypeVar('T')


class EmbeddingProvider:
    """Turns a concept plus arbitrary data into a vector.

    The model behind it is external; implementations only need ``embed``.
    """

    def embed(self, concept: str, data: Any = None) -> List[float]:
        raise NotImplementedError


class NullEmbedder(EmbeddingProvider):
    """Used when no embedding model is configured."""

    def embed(self, concept: str, data: Any = None) -> List[float]:
        return []


class MemoryStore:
    """Team-partitioned CRUD over learning memories.

    Usage:
        store = MemoryStore(storage, registry)

        store.store("frontend", LearningMemory(id=LearningMemory.new_id(),
                                               concept="react-hooks",
                                               confidence=0.9))

        store.retrieve("frontend", "react")   # substring match: react-hooks
    """

    def __init__(
        self,
        storage: StorageManager,
        registry: TeamRegistry,
        conflict_window: float = Defaults.CONFLICT_WINDOW_SECONDS,
        replicate: bool = True,
        embedder: Optional[EmbeddingProvider] = None,
        locks: Optional[TeamLocks] = None,
        metrics: Optional[TeamMemoryMetrics] = None
    ):
        self.storage = storage
        self.registry = registry
        self.replicate = replicate
        self.embedder = embedder or NullEmbedder()
        self.metrics = metrics or storage.metrics
        self.resolver = ConflictResolver(self, window=conflict_window, locks=locks,
                                         metrics=self.metrics)

    # =========================================================================
    # PARTITION PRIMITIVES
    # =========================================================================

    def _put(self, team_id: str, entity: str, record_id: str, data: Dict) -> None:
        self.storage.store(
            StorageKeys.record(team_id, entity, record_id),
            data,
            replicate=self.replicate,
            index=(StorageKeys.partition(team_id, entity), record_id)
        )

    def _load(self, team_id: str, entity: str, record_id: str, factory: Callable[[Dict], T]) -> Optional[T]:
        key = StorageKeys.record(team_id, entity, record_id)
        try:
            return factory(self.storage.retrieve(key, use_cache=False).value)
        except NotFound:
            return None

    def _load_partition(self, team_id: str, entity: str, factory: Callable[[Dict], T]) -> List[T]:
        """Load every record of a partition, skipping corrupt ones."""
        records = []
        for record_id in sorted(self.storage.list_index(StorageKeys.partition(team_id, entity))):
            try:
                record = self._load(team_id, entity, record_id, factory)
            except (SerializationError, TypeError, KeyError, ValueError) as e:
                logger.warning("Skipping corrupt %s record %s: %s", entity, record_id, str(e),
                               extra={'team_id': team_id})
                continue
            if record is None:
                logger.debug("Indexed %s record %s has no data yet", entity, record_id)
                continue
            records.append(record)
        return records

    # =========================================================================
    # MEMORIES
    # =========================================================================

    def store(self, team_id: str, memory: LearningMemory) -> LearningMemory:
        """Persist a memory in the team's partition.

        Runs the write-time conflict check inline: if an active memory with
        the same concept was created within the conflict window, the group is
        resolved immediately and ``memory.consolidated`` reflects the outcome.

        Raises:
            TeamNotFound: If the team was never created
            BackendUnavailable: If no backend accepted the write
        """
        self.registry.require_team(team_id)

        with self.resolver.locks.hold(team_id):
            self._put(team_id, StorageKeys.MEMORIES, memory.id, memory.to_dict())
            self.resolver.check_on_write(team_id, memory)

        logger.debug("Stored memory %s (%s)", memory.id, memory.concept, extra={'team_id': team_id})
        return memory

    def remember(
        self,
        team_id: str,
        concept: str,
        data: Any = None,
        confidence: float = 0.5,
        performance: float = 0.0,
        contributor: Optional[str] = None,
        relationships: Optional[List[str]] = None
    ) -> LearningMemory:
        """Build a memory with the configured embedder and store it."""
        memory = LearningMemory(
            id=LearningMemory.new_id(),
            concept=concept,
            timestamp=time.time(),
            embedding=list(self.embedder.embed(concept, data)),
            context=MemoryContext(domain=extract_domain(concept), contributor=contributor),
            performance=performance,
            confidence=confidence,
            relationships=list(relationships or []),
        )
        return self.store(team_id, memory)

    def update(self, team_id: str, memory: LearningMemory) -> LearningMemory:
        """Overwrite an existing memory (used for consolidation)."""
        self._put(team_id, StorageKeys.MEMORIES, memory.id, memory.to_dict())
        return memory

    def get(self, team_id: str, memory_id: str) -> Optional[LearningMemory]:
        return self._load(team_id, StorageKeys.MEMORIES, memory_id, LearningMemory.from_dict)

    def retrieve(
        self,
        team_id: str,
        concept_filter: Optional[str] = None,
        include_consolidated: bool = True
    ) -> List[LearningMemory]:
        """List a team's memories, oldest first.

        ``concept_filter`` is a substring test: "react" matches "react" and
        "react-hooks".
        """
        memories = self._load_partition(team_id, StorageKeys.MEMORIES, LearningMemory.from_dict)
        if concept_filter is not None:
            memories = [m for m in memories if concept_filter in m.concept]
        if not include_consolidated:
            memories = [m for m in memories if not m.consolidated]
        return sorted(memories, key=lambda m: (m.timestamp, m.id))

    def active(self, team_id: str, concept_filter: Optional[str] = None) -> List[LearningMemory]:
        """Non-consolidated memories only."""
        return self.retrieve(team_id, concept_filter, include_consolidated=False)

    def count(self, team_id: str, concept_filter: Optional[str] = None, active_only: bool = False) -> int:
        return len(self.retrieve(team_id, concept_filter, include_consolidated=not active_only))

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def store_snapshot(self, team_id: str, snapshot: UnderstandingSnapshot) -> UnderstandingSnapshot:
        self.registry.require_team(team_id)
        self._put(team_id, StorageKeys.SNAPSHOTS, snapshot.id, snapshot.to_dict())
        return snapshot

    def retrieve_snapshots(self, team_id: str, domain: Optional[str] = None) -> List[UnderstandingSnapshot]:
        snapshots = self._load_partition(team_id, StorageKeys.SNAPSHOTS, UnderstandingSnapshot.from_dict)
        if domain is not None:
            snapshots = [s for s in snapshots if s.domain == domain]
        return sorted(snapshots, key=lambda s: (s.timestamp, s.id))

    # =========================================================================
    # CONFLICTS
    # =========================================================================

    def save_conflict(self, team_id: str, conflict: MemoryConflict) -> MemoryConflict:
        self._put(team_id, StorageKeys.CONFLICTS, conflict.id, conflict.to_dict())
        return conflict

    def list_conflicts(self, team_id: str, unresolved_only: bool = False) -> List[MemoryConflict]:
        conflicts = self._load_partition(team_id, StorageKeys.CONFLICTS, MemoryConflict.from_dict)
        if unresolved_only:
            conflicts = [c for c in conflicts if not c.resolved]
        return sorted(conflicts, key=lambda c: (c.created_at, c.id))

    # =========================================================================
    # INSIGHTS
    # =========================================================================

    def store_insight(self, team_id: str, insight: TeamLearningInsight) -> TeamLearningInsight:
        self.registry.require_team(team_id)
        self._put(team_id, StorageKeys.INSIGHTS, insight.id, insight.to_dict())
        return insight

    def list_insights(self, team_id: str, concept_filter: Optional[str] = None) -> List[TeamLearningInsight]:
        insights = self._load_partition(team_id, StorageKeys.INSIGHTS, TeamLearningInsight.from_dict)
        if concept_filter is not None:
            insights = [i for i in insights if concept_filter in i.concept]
        return sorted(insights, key=lambda i: (i.created_at, i.id))
