"""
Retrieve module

Three-factor memory retrieval:
1. Recency: half-life decay since last access, recent memories weigh more
2. Importance: the memory's importance score (1-10), normalized by /10
3. Relevance: cosine similarity between the query and the memory embedding

retrieval score = w_r·recency + w_i·importance + w_v·relevance
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from mazemind.agent.context import Position
from mazemind.agent.memory.memory_record import MemoryRecord
from mazemind.agent.memory.memory_stream import MemoryStore
from mazemind.errors import ConfigurationError

TAG = __name__


@dataclass
class RetrievalResult:
    """a retrieved record with its component scores"""

    record: MemoryRecord
    score: float
    recency: float
    importance: float
    relevance: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_id': self.record.record_id,
            'content': self.record.content,
            'score': self.score,
            'recency': self.recency,
            'importance': self.importance,
            'relevance': self.relevance,
        }


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """cosine similarity of two vectors (-1 to 1), 0.0 for mismatched or zero vectors"""
    if len(vec1) != len(vec2):
        logger.bind(tag=TAG).error(f"Vector dimension mismatch: {len(vec1)} vs {len(vec2)}")
        return 0.0

    v1 = np.asarray(vec1, dtype=float)
    v2 = np.asarray(vec2, dtype=float)

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    # plain float so results stay JSON serializable
    return float(np.dot(v1, v2) / (norm1 * norm2))


class RetrievalEngine:
    """
    retrieval engine - rank the records of a MemoryStore for a query

    The embedding service is injected; anything with an async
    embed(text) -> List[float] works.
    """

    def __init__(
        self,
        store: MemoryStore,
        embedder=None,
        recency_weight: float = 1.0,
        importance_weight: float = 1.0,
        relevance_weight: float = 1.0,
        half_life_hours: float = 24.0,
        top_k: int = 10,
        touch_on_retrieve: bool = True,
    ):
        """
        initialize retrieval engine

        Args:
            store: memory store to search
            embedder: embedding service (None = importance-only ranking)
            recency_weight: recency weight
            importance_weight: importance weight
            relevance_weight: relevance weight
            half_life_hours: recency half-life in game hours
            top_k: default number of results
            touch_on_retrieve: bump last_accessed of returned records
        """
        if min(recency_weight, importance_weight, relevance_weight) < 0:
            raise ConfigurationError("retrieval weights must be >= 0")
        if half_life_hours <= 0:
            raise ConfigurationError("half_life_hours must be positive")
        if top_k <= 0:
            raise ConfigurationError("top_k must be positive")

        self.store = store
        self.embedder = embedder
        self.recency_weight = recency_weight
        self.importance_weight = importance_weight
        self.relevance_weight = relevance_weight
        self.half_life_hours = half_life_hours
        self.top_k = top_k
        self.touch_on_retrieve = touch_on_retrieve

        logger.bind(tag=TAG).info(
            f"RetrievalEngine initialized with weights: recency={recency_weight}, "
            f"importance={importance_weight}, relevance={relevance_weight}, "
            f"half_life={half_life_hours}h, touch_on_retrieve={touch_on_retrieve}"
        )

    def score(
        self,
        record: MemoryRecord,
        current_time: float,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> RetrievalResult:
        """score a single record; without a query embedding relevance is 0"""
        recency = record.get_recency_score(current_time, self.half_life_hours)
        importance = record.importance / 10
        relevance = 0.0
        if query_embedding is not None and record.has_embedding:
            relevance = cosine_similarity(query_embedding, record.embedding)

        combined = (
            self.recency_weight * recency
            + self.importance_weight * importance
            + self.relevance_weight * relevance
        )

        logger.bind(tag=TAG).debug(
            f"Memory '{record.content[:30]}...': recency={recency:.4f}, "
            f"importance={importance:.4f}, relevance={relevance:.4f}, score={combined:.4f}"
        )

        return RetrievalResult(
            record=record,
            score=float(combined),
            recency=recency,
            importance=importance,
            relevance=relevance,
        )

    def rank(
        self,
        query_embedding: Optional[Sequence[float]],
        records: Sequence[MemoryRecord],
        k: int,
        current_time: float,
    ) -> List[RetrievalResult]:
        """
        synchronous scoring core

        With a query embedding only records that carry an embedding are
        ranked. Without one (importance-only ranking) every record is ranked
        on recency and importance. Ties go to the most recently accessed.
        """
        if query_embedding is not None:
            records = [r for r in records if r.has_embedding]

        scored = [self.score(r, current_time, query_embedding) for r in records]
        scored.sort(key=lambda result: (result.score, result.record.last_accessed), reverse=True)
        return scored[:k]

    async def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        current_time: Optional[float] = None,
        importance_only: bool = False,
        predicate: Optional[Callable[[MemoryRecord], bool]] = None,
    ) -> List[RetrievalResult]:
        """
        retrieve the top-k records for a query

        Args:
            query: query text
            k: number of results (default top_k)
            current_time: game time (default store clock)
            importance_only: skip the embedding call, rank on recency and importance
            predicate: optional filter on candidate records

        Returns:
            results ordered by score, empty list when nothing matches
        """
        k = self.top_k if k is None else k
        if k <= 0:
            return []
        if current_time is None:
            current_time = self.store.clock()

        records = list(self.store.query(predicate))
        if not records:
            return []

        query_embedding = None
        if not importance_only:
            if self.embedder is None:
                logger.bind(tag=TAG).debug("no embedding service, using importance-only ranking")
            else:
                try:
                    query_embedding = await self.embedder.embed(query)
                except Exception as e:
                    logger.bind(tag=TAG).warning(
                        f"embedding service failed ({e}), falling back to importance-only ranking"
                    )

        results = self.rank(query_embedding, records, k, current_time)

        if self.touch_on_retrieve:
            for result in results:
                result.record.touch(current_time)

        logger.bind(tag=TAG).debug(f"retrieved {len(results)} memories for '{query[:30]}'")

        return results

    async def retrieve_by_kind(self, query: str, kind: str, k: Optional[int] = None, **kwargs) -> List[RetrievalResult]:
        return await self.retrieve(query, k=k, predicate=lambda r: r.kind == kind, **kwargs)

    async def retrieve_near(
        self,
        query: str,
        position: Position,
        radius: float = 3,
        k: Optional[int] = None,
        **kwargs,
    ) -> List[RetrievalResult]:
        """retrieve among records tagged within radius tiles of position"""
        def nearby(record: MemoryRecord) -> bool:
            return record.location is not None and record.location.euclidean(position) <= radius

        return await self.retrieve(query, k=k, predicate=nearby, **kwargs)

    def set_weights(
        self,
        recency: Optional[float] = None,
        importance: Optional[float] = None,
        relevance: Optional[float] = None,
    ):
        """update retrieval weights"""
        for name, value in (("recency", recency), ("importance", importance), ("relevance", relevance)):
            if value is None:
                continue
            if value < 0:
                raise ConfigurationError(f"{name} weight must be >= 0")
            setattr(self, f"{name}_weight", value)

        logger.bind(tag=TAG).info(
            f"Retrieval weights updated: recency={self.recency_weight}, "
            f"importance={self.importance_weight}, relevance={self.relevance_weight}"
        )
