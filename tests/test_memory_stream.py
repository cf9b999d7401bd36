"""
Tests for MemoryRecord and MemoryStore.
"""

import json
import math

import pytest

from mazemind.agent.context import Position
from mazemind.agent.memory.importance_scorer import ImportanceScorer
from mazemind.agent.memory.memory_record import MemoryRecord, recency_score
from mazemind.agent.memory.memory_stream import MemoryStore
from mazemind.errors import ConfigurationError, MalformedRecordError

from tests.conftest import FakeClock


# =============================================================================
# MemoryRecord
# =============================================================================

class TestMemoryRecord:

    def test_recency_is_half_at_half_life(self):
        assert recency_score(0, 24) == 1.0
        assert recency_score(24, 24) == pytest.approx(0.5)
        assert recency_score(48, 24) == pytest.approx(0.25)

    def test_recency_strictly_decreases(self):
        scores = [recency_score(hours, 24) for hours in (0, 1, 5, 24, 100)]
        assert all(a > b for a, b in zip(scores, scores[1:]))

    @pytest.mark.parametrize("importance", [0, 11, -3, float("nan"), "high", True])
    def test_bad_importance_is_rejected(self, importance):
        with pytest.raises(MalformedRecordError):
            MemoryRecord(record_id="r", content="x", created=0, last_accessed=0, importance=importance)

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(MalformedRecordError):
            MemoryRecord(record_id="r", content="x", created=0, last_accessed=0, kind="dream")

    def test_touch_never_moves_backwards(self):
        record = MemoryRecord(record_id="r", content="x", created=100, last_accessed=100)
        assert record.touch(200)
        assert not record.touch(150)
        assert record.last_accessed == 200

    def test_json_round_trip_keeps_every_field(self):
        record = MemoryRecord(
            record_id="ref_1",
            content="Water is usually near the east wall",
            created=10.0,
            last_accessed=50.0,
            importance=8,
            kind="reflection",
            embedding=[0.1, 0.2, 0.3],
            location=Position(4, 2),
            citations=["obs_1", "obs_2"],
            level=1,
            tags=["water"],
            metadata={"question": "where is water?"},
        )
        restored = MemoryRecord.from_dict(json.loads(json.dumps(record.to_dict())))
        assert restored == record


# =============================================================================
# MemoryStore
# =============================================================================

class TestMemoryStore:

    def test_add_and_get(self, store):
        record = store.add_observation("Saw food at (3, 0)", 6, location=Position(3, 0))
        assert store.get(record.record_id) is record
        assert record.record_id in store
        assert len(store) == 1

    def test_records_keep_creation_order(self, store, clock):
        for i in range(5):
            clock.now = i * 60
            store.add_observation(f"step {i} in the corridor", 3)
        assert [r.created for r in store.query()] == [0, 60, 120, 180, 240]
        assert [r.content for r in store.recent(2)] == ["step 4 in the corridor", "step 3 in the corridor"]

    def test_eviction_drops_lowest_retention(self):
        store = MemoryStore("alice", capacity=3, clock=FakeClock(0))
        records = [store.add_observation(f"memory {i}", importance) for i, importance in enumerate([5, 9, 1, 7])]

        assert len(store) == 3
        assert records[2].record_id not in store
        assert sorted(r.importance for r in store.query()) == [5, 7, 9]
        assert store.evicted_count == 1

    def test_eviction_prefers_old_records_on_equal_importance(self):
        clock = FakeClock(0)
        store = MemoryStore("alice", capacity=2, clock=clock)
        first = store.add_observation("old", 5)
        clock.now = 48 * 3600
        store.add_observation("newer", 5)
        store.add_observation("newest", 5)
        assert first.record_id not in store

    def test_query_snapshot_ignores_later_adds(self, store):
        store.add_observation("one thing happened", 5)
        scan = store.query()
        store.add_observation("another thing happened", 5)
        assert len(list(scan)) == 1

    def test_query_with_predicate(self, store):
        store.add_observation("food here", 6)
        store.add_plan("Plan: find water", 5)
        assert [r.kind for r in store.query(lambda r: r.kind == "plan")] == ["plan"]
        assert len(store.by_kind("observation")) == 1

    def test_near_filters_by_radius(self, store):
        store.add_observation("close", 5, location=Position(1, 1))
        store.add_observation("far", 5, location=Position(9, 9))
        store.add_observation("nowhere", 5)
        assert [r.content for r in store.near(Position(0, 0), radius=2)] == ["close"]

    def test_listener_sees_every_add(self, store):
        seen = []
        store.add_listener(seen.append)
        store.add_observation("a new corridor", 4)
        store.add_plan("Plan: explore", 5)
        assert [r.kind for r in seen] == ["observation", "plan"]

    def test_set_embedding_on_missing_record(self, store):
        record = store.add_observation("text", 5)
        assert store.missing_embeddings() == [record]
        assert store.set_embedding(record.record_id, [1.0, 0.0])
        assert not store.set_embedding("gone", [1.0])
        assert store.missing_embeddings() == []

    def test_invalid_configuration(self):
        with pytest.raises(ConfigurationError):
            MemoryStore("alice", capacity=0)
        with pytest.raises(ConfigurationError):
            MemoryStore("alice", retention_importance_weight=-1)

    def test_save_and_load(self, tmp_path, clock):
        path = tmp_path / "memory" / "alice.json"
        store = MemoryStore("alice", clock=clock, memory_file=str(path))
        store.add_observation("Found water at the junction", 7, location=Position(2, 5))
        store.add_reflection("Water gathers at junctions", 8, citations=["obs_x"])
        store.save()

        restored = MemoryStore("alice", clock=clock, memory_file=str(path))
        restored.load()
        assert [r.to_dict() for r in restored.query()] == [r.to_dict() for r in store.query()]

    def test_statistics(self, store):
        store.add_observation("a", 4)
        store.add_reflection("b", 8, citations=[])
        stats = store.get_statistics()
        assert stats['total'] == 2
        assert stats['observations'] == 1
        assert stats['reflections'] == 1
        assert stats['avg_importance'] == 6.0


# =============================================================================
# ImportanceScorer
# =============================================================================

class TestImportanceScorer:

    def test_scores_stay_in_range(self):
        scorer = ImportanceScorer()
        for text in ["", "ok", "walked", "dying of thirst, must find water now", "x" * 500]:
            assert 1 <= scorer.score(text) <= 10

    def test_threats_outrank_routine(self):
        scorer = ImportanceScorer()
        assert scorer.score("I am starving and cannot find food") > scorer.score("walked down the corridor")

    def test_exit_sighting_is_important(self):
        assert ImportanceScorer().score("Saw the exit of the maze to the north") >= 9

    def test_routine_stays_low(self):
        assert ImportanceScorer().score("walked a few steps and waited") <= 3

    def test_reflection_base_is_higher(self):
        scorer = ImportanceScorer()
        text = "something happened over there today"
        assert scorer.score(text, kind="reflection") > scorer.score(text)
        assert not math.isnan(scorer.score(text))
