"""
Tests for three-factor retrieval.
"""

import asyncio

import pytest

from mazemind.agent.context import Position
from mazemind.agent.memory.retrieve import RetrievalEngine, cosine_similarity
from mazemind.errors import ConfigurationError

from tests.conftest import FailingEmbedder, HashEmbedder


def embed_all(store, embedder):
    async def run():
        for record in store.missing_embeddings():
            store.set_embedding(record.record_id, await embedder.embed(record.content))
    asyncio.run(run())


# =============================================================================
# Cosine similarity
# =============================================================================

class TestCosineSimilarity:

    def test_identical_and_opposite(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)

    def test_zero_or_mismatched_vectors(self):
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0

    def test_returns_plain_float(self):
        assert type(cosine_similarity([1.0, 0.5], [0.5, 1.0])) is float


# =============================================================================
# RetrievalEngine
# =============================================================================

class TestRetrievalEngine:

    def test_relevant_record_ranks_first(self, store, embedder):
        store.add_observation("found fresh water near the fountain", 5)
        store.add_observation("the corridor walls are made of stone", 5)
        store.add_observation("another agent walked past", 5)
        embed_all(store, embedder)

        engine = RetrievalEngine(store, embedder)
        results = asyncio.run(engine.retrieve("where is fresh water", k=2, current_time=0))

        assert len(results) == 2
        assert results[0].record.content == "found fresh water near the fountain"
        assert results[0].relevance > results[1].relevance

    def test_score_combines_three_factors(self, store, clock):
        record = store.add_observation("x", 8)
        record.embedding = [1.0, 0.0]
        engine = RetrievalEngine(store, recency_weight=2, importance_weight=3, relevance_weight=4)

        result = engine.score(record, current_time=24 * 3600, query_embedding=[1.0, 0.0])
        assert result.recency == pytest.approx(0.5)
        assert result.importance == pytest.approx(0.8)
        assert result.relevance == pytest.approx(1.0)
        assert result.score == pytest.approx(2 * 0.5 + 3 * 0.8 + 4 * 1.0)

    def test_only_embedded_records_ranked_with_query(self, store, embedder):
        store.add_observation("food in the north corridor", 5)
        embed_all(store, embedder)
        store.add_observation("food in the south corridor", 9)

        engine = RetrievalEngine(store, embedder)
        results = asyncio.run(engine.retrieve("food", current_time=0))
        assert [r.record.content for r in results] == ["food in the north corridor"]

    def test_importance_only_ranks_everything(self, store, embedder):
        store.add_observation("low", 2)
        store.add_observation("high", 9)
        engine = RetrievalEngine(store, embedder)

        results = asyncio.run(engine.retrieve("anything", current_time=0, importance_only=True))
        assert [r.record.content for r in results] == ["high", "low"]
        assert all(r.relevance == 0.0 for r in results)
        assert embedder.calls == 0

    def test_embedding_failure_falls_back(self, store):
        store.add_observation("low", 2)
        store.add_observation("high", 9)
        engine = RetrievalEngine(store, FailingEmbedder())

        results = asyncio.run(engine.retrieve("anything", current_time=0))
        assert [r.record.content for r in results] == ["high", "low"]

    def test_ties_go_to_most_recently_accessed(self, store, clock):
        older = store.add_observation("first", 5)
        newer = store.add_observation("second", 5)
        older.last_accessed = 0
        newer.last_accessed = 0
        newer.touch(1)

        engine = RetrievalEngine(store, recency_weight=0)
        results = engine.rank(None, list(store.query()), k=2, current_time=10)
        assert results[0].record is newer

    def test_empty_store_returns_empty_list(self, store, embedder):
        engine = RetrievalEngine(store, embedder)
        assert asyncio.run(engine.retrieve("anything")) == []
        assert embedder.calls == 0

    def test_explicit_zero_k_returns_nothing(self, store, embedder):
        record = store.add_observation("Found water at the junction", 6)
        engine = RetrievalEngine(store, embedder, top_k=5)
        assert asyncio.run(engine.retrieve("water", k=0, current_time=3600)) == []
        assert asyncio.run(engine.retrieve("water", k=-1)) == []
        assert embedder.calls == 0
        assert record.last_accessed == 0
        assert len(asyncio.run(engine.retrieve("water", importance_only=True))) == 1

    def test_retrieval_touches_returned_records(self, store):
        record = store.add_observation("x", 5)
        engine = RetrievalEngine(store)
        asyncio.run(engine.retrieve("x", current_time=3600))
        assert record.last_accessed == 3600

    def test_touch_can_be_disabled(self, store):
        record = store.add_observation("x", 5)
        engine = RetrievalEngine(store, touch_on_retrieve=False)
        asyncio.run(engine.retrieve("x", current_time=3600))
        assert record.last_accessed == 0

    def test_retrieve_near_and_by_kind(self, store):
        store.add_observation("close", 5, location=Position(1, 0))
        store.add_observation("far", 5, location=Position(8, 8))
        store.add_plan("Plan: rest", 5)
        engine = RetrievalEngine(store, HashEmbedder())

        near = asyncio.run(engine.retrieve_near("x", Position(0, 0), radius=2, importance_only=True))
        plans = asyncio.run(engine.retrieve_by_kind("x", "plan", importance_only=True))
        assert [r.record.content for r in near] == ["close"]
        assert [r.record.kind for r in plans] == ["plan"]

    def test_weights_are_validated(self, store):
        with pytest.raises(ConfigurationError):
            RetrievalEngine(store, recency_weight=-1)
        engine = RetrievalEngine(store)
        engine.set_weights(relevance=2.5)
        assert engine.relevance_weight == 2.5
        with pytest.raises(ConfigurationError):
            engine.set_weights(importance=-0.1)
