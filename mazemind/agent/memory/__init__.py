"""
Agent memory

Contains the following modules:
- memory_record: memory record data structure
- memory_stream: bounded memory store with eviction
- importance_scorer: rule-based importance scoring
- embedding_generator: embedding services
- retrieve: three-factor retrieval
- reflect: reflection and meta-reflection
- relationships: per-agent relationship memory
"""

from .memory_record import MemoryRecord, recency_score
from .memory_stream import MemoryStore
from .importance_scorer import ImportanceScorer
from .embedding_generator import EmbeddingGenerator
from .retrieve import RetrievalEngine, RetrievalResult
from .reflect import ReflectionEngine, ReflectionArena, ReflectionNode, Insight
from .relationships import RelationshipMemory, RelationshipRecord

__all__ = [
    "MemoryRecord",
    "recency_score",
    "MemoryStore",
    "ImportanceScorer",
    "EmbeddingGenerator",
    "RetrievalEngine",
    "RetrievalResult",
    "ReflectionEngine",
    "ReflectionArena",
    "ReflectionNode",
    "Insight",
    "RelationshipMemory",
    "RelationshipRecord",
]
