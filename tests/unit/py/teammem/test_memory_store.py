"""P0 Critical Tests: Team-partitioned memory store.

Tests the MemoryStore class which handles:
- Storing and listing learning memories per team
- Substring concept filters and active-only views
- Skipping corrupt records during partition scans
- Snapshots, conflicts and insights partitions
"""

import time

import pytest

from teammem.errors import TeamNotFound
from teammem.memory_store import EmbeddingProvider, MemoryStore
from teammem.types import (
    LearningMemory,
    MemoryConflict,
    MemoryContext,
    TeamLearningInsight,
    UnderstandingSnapshot,
)


def make_memory(memory_id, concept, confidence=0.5, timestamp=None, **kwargs):
    return LearningMemory(
        id=memory_id,
        concept=concept,
        confidence=confidence,
        timestamp=timestamp if timestamp is not None else time.time(),
        **kwargs
    )


class FixedEmbedder(EmbeddingProvider):

    def __init__(self):
        self.calls = []

    def embed(self, concept, data=None):
        self.calls.append((concept, data))
        return [0.25, 0.5]


@pytest.fixture
def quiet_store(storage, registry, locks):
    """Memory store with write-time conflict detection effectively disabled."""
    return MemoryStore(storage, registry, conflict_window=0.0, locks=locks)


class TestStoreMemories:

    @pytest.mark.p0
    def test_store_and_get_round_trip(self, memory_store, team):
        memory = make_memory(
            "mem-1", "react-hooks", confidence=0.8,
            embedding=[0.1, 0.2],
            context=MemoryContext(domain="general_concepts", contributor="alice"),
            performance=0.6,
            relationships=["react"],
        )

        memory_store.store("frontend", memory)

        assert memory_store.get("frontend", "mem-1") == memory

    @pytest.mark.p0
    def test_store_for_unknown_team_raises(self, memory_store, storage):
        with pytest.raises(TeamNotFound):
            memory_store.store("ghost", make_memory("mem-1", "x"))

        assert storage.list_index("teams:ghost:memories") == set()

    @pytest.mark.p0
    def test_memories_are_partitioned_by_team(self, memory_store, registry, team):
        registry.create_team("backend")
        memory_store.store("frontend", make_memory("mem-1", "caching"))
        memory_store.store("backend", make_memory("mem-2", "caching"))

        assert [m.id for m in memory_store.retrieve("frontend")] == ["mem-1"]
        assert [m.id for m in memory_store.retrieve("backend")] == ["mem-2"]

    @pytest.mark.p0
    def test_concept_filter_is_substring(self, quiet_store, team):
        quiet_store.store("frontend", make_memory("mem-1", "react", timestamp=1.0))
        quiet_store.store("frontend", make_memory("mem-2", "react-hooks", timestamp=2.0))
        quiet_store.store("frontend", make_memory("mem-3", "vue", timestamp=3.0))

        assert [m.id for m in quiet_store.retrieve("frontend", "react")] == ["mem-1", "mem-2"]
        assert [m.id for m in quiet_store.retrieve("frontend", "hooks")] == ["mem-2"]
        assert quiet_store.retrieve("frontend", "angular") == []

    @pytest.mark.p1
    def test_retrieve_orders_by_timestamp(self, quiet_store, team):
        quiet_store.store("frontend", make_memory("mem-b", "b", timestamp=20.0))
        quiet_store.store("frontend", make_memory("mem-a", "a", timestamp=10.0))

        assert [m.id for m in quiet_store.retrieve("frontend")] == ["mem-a", "mem-b"]

    @pytest.mark.p0
    def test_active_excludes_consolidated(self, quiet_store, team):
        quiet_store.store("frontend", make_memory("mem-1", "a"))
        quiet_store.store("frontend", make_memory("mem-2", "b", consolidated=True))

        assert [m.id for m in quiet_store.active("frontend")] == ["mem-1"]
        assert quiet_store.count("frontend") == 2
        assert quiet_store.count("frontend", active_only=True) == 1

    @pytest.mark.p1
    def test_update_overwrites(self, quiet_store, team):
        memory = quiet_store.store("frontend", make_memory("mem-1", "a", confidence=0.2))
        memory.confidence = 0.4

        quiet_store.update("frontend", memory)

        assert quiet_store.get("frontend", "mem-1").confidence == 0.4

    @pytest.mark.p1
    def test_get_missing_returns_none(self, memory_store, team):
        assert memory_store.get("frontend", "nope") is None

    @pytest.mark.p1
    def test_remember_uses_embedder_and_domain(self, storage, registry, team):
        embedder = FixedEmbedder()
        store = MemoryStore(storage, registry, embedder=embedder)

        memory = store.remember("frontend", "neural-layers", data={"x": 1},
                                confidence=0.9, contributor="alice")

        assert memory.embedding == [0.25, 0.5]
        assert embedder.calls == [("neural-layers", {"x": 1})]
        assert memory.context.domain == "neural_networks"
        assert memory.context.contributor == "alice"
        assert store.get("frontend", memory.id) == memory

    @pytest.mark.p1
    def test_remember_without_embedder_stores_empty_vector(self, memory_store, team):
        memory = memory_store.remember("frontend", "css-grid")

        assert memory.embedding == []
        assert memory.id.startswith("mem-")


class TestCorruptRecords:

    @pytest.mark.p0
    def test_corrupt_records_are_skipped(self, quiet_store, cache_backend, team):
        quiet_store.store("frontend", make_memory("mem-good", "a"))
        cache_backend.put("teams:frontend:memories:mem-garbage", b"{not json")
        cache_backend.index_add("teams:frontend:memories", "mem-garbage")
        cache_backend.put("teams:frontend:memories:mem-range",
                          b'{"id":"mem-range","concept":"a","confidence":7}')
        cache_backend.index_add("teams:frontend:memories", "mem-range")
        cache_backend.put("teams:frontend:memories:mem-partial", b'{"concept":"a"}')
        cache_backend.index_add("teams:frontend:memories", "mem-partial")

        assert [m.id for m in quiet_store.retrieve("frontend")] == ["mem-good"]

    @pytest.mark.p0
    @pytest.mark.parametrize("payload", [b"null", b"[1,2]", b'"x"'])
    def test_non_object_records_are_skipped(self, quiet_store, cache_backend, team, payload):
        quiet_store.store("frontend", make_memory("mem-good", "a"))
        cache_backend.put("teams:frontend:memories:mem-bad", payload)
        cache_backend.index_add("teams:frontend:memories", "mem-bad")

        assert [m.id for m in quiet_store.retrieve("frontend")] == ["mem-good"]
        assert [m.id for m in quiet_store.active("frontend")] == ["mem-good"]

    @pytest.mark.p1
    def test_record_with_non_object_context_is_skipped(self, quiet_store, cache_backend, team):
        quiet_store.store("frontend", make_memory("mem-good", "a"))
        cache_backend.put("teams:frontend:memories:mem-bad",
                          b'{"id":"mem-bad","concept":"a","confidence":0.1,"context":"oops"}')
        cache_backend.index_add("teams:frontend:memories", "mem-bad")

        assert [m.id for m in quiet_store.retrieve("frontend")] == ["mem-good"]

    @pytest.mark.p1
    def test_index_entry_without_record_is_skipped(self, quiet_store, cache_backend, team):
        cache_backend.index_add("teams:frontend:memories", "mem-ghost")

        assert quiet_store.retrieve("frontend") == []


class TestSnapshots:

    @pytest.mark.p1
    def test_store_and_filter_by_domain(self, memory_store, team):
        memory_store.store_snapshot("frontend", UnderstandingSnapshot(
            id="snap-1", domain="graph_structures", concepts=["dag"], timestamp=2.0))
        memory_store.store_snapshot("frontend", UnderstandingSnapshot(
            id="snap-2", domain="general_concepts", concepts=["css"], timestamp=1.0))

        assert [s.id for s in memory_store.retrieve_snapshots("frontend")] == ["snap-2", "snap-1"]
        assert [s.id for s in memory_store.retrieve_snapshots("frontend", "graph_structures")] == ["snap-1"]

    @pytest.mark.p1
    def test_snapshot_for_unknown_team(self, memory_store):
        with pytest.raises(TeamNotFound):
            memory_store.store_snapshot("ghost", UnderstandingSnapshot(id="s", domain="d"))


class TestConflictsAndInsights:

    @pytest.mark.p1
    def test_list_conflicts_unresolved_only(self, memory_store, team):
        memory_store.save_conflict("frontend", MemoryConflict(
            id="c1", team_id="frontend", concept="a", conflicting_memories=["m1", "m2"],
            resolved=True, created_at=1.0))
        memory_store.save_conflict("frontend", MemoryConflict(
            id="c2", team_id="frontend", concept="b", conflicting_memories=["m3", "m4"],
            created_at=2.0))

        assert [c.id for c in memory_store.list_conflicts("frontend")] == ["c1", "c2"]
        assert [c.id for c in memory_store.list_conflicts("frontend", unresolved_only=True)] == ["c2"]

    @pytest.mark.p2
    def test_insights(self, memory_store, team):
        memory_store.store_insight("frontend", TeamLearningInsight(
            id="i1", team_id="frontend", concept="react-hooks",
            insight="prefer custom hooks", contributors=["alice"]))

        insights = memory_store.list_insights("frontend", "react")

        assert [i.insight for i in insights] == ["prefer custom hooks"]
        assert memory_store.list_insights("frontend", "vue") == []
