"""
MemoryRecord - a single unit of agent experience

Each memory is a MemoryRecord, containing:
- content (natural language description)
- creation and last-access timestamps (game seconds)
- importance score (1-10, fixed at creation)
- vector representation (for relevance retrieval)
- citations (ids of the records a reflection is grounded on)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import math

from mazemind.agent.context import Position
from mazemind.errors import MalformedRecordError

MEMORY_KINDS = ("observation", "reflection", "plan")


def recency_score(hours_since_access: float, half_life_hours: float) -> float:
    """
    exponential recency decay with a half-life

    recency = 0.5 ^ (hours / half_life), so a record last accessed exactly
    half_life_hours ago scores 0.5
    """
    return math.pow(0.5, max(0.0, hours_since_access) / half_life_hours)


@dataclass
class MemoryRecord:
    """single memory record"""

    record_id: str
    content: str

    # time information (game seconds)
    created: float
    last_accessed: float

    # importance score (1-10)
    importance: float = 5

    # observation, reflection, plan
    kind: str = "observation"

    embedding: Optional[List[float]] = None
    location: Optional[Position] = None

    # ids of the records this one is grounded on
    citations: List[str] = field(default_factory=list)

    # 0 for observations and plans, >= 1 for reflections
    level: int = 0

    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """reject malformed records instead of clamping them"""
        if isinstance(self.importance, bool) or not isinstance(self.importance, (int, float)):
            raise MalformedRecordError(f"importance must be a number, got {self.importance!r}")
        if math.isnan(self.importance) or not 1 <= self.importance <= 10:
            raise MalformedRecordError(f"importance must be within [1, 10], got {self.importance}")
        if self.kind not in MEMORY_KINDS:
            raise MalformedRecordError(f"unknown memory kind '{self.kind}'")
        if self.last_accessed < self.created:
            self.last_accessed = self.created

    def touch(self, current_time: float) -> bool:
        """record an access; last_accessed never moves backwards"""
        if current_time > self.last_accessed:
            self.last_accessed = current_time
            return True
        return False

    def get_age_hours(self, current_time: float) -> float:
        return (current_time - self.created) / 3600

    def hours_since_access(self, current_time: float) -> float:
        return (current_time - self.last_accessed) / 3600

    def get_recency_score(self, current_time: float, half_life_hours: float = 24.0) -> float:
        return recency_score(self.hours_since_access(current_time), half_life_hours)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    def to_dict(self) -> Dict[str, Any]:
        """convert to dict (for serialization)"""
        return {
            'record_id': self.record_id,
            'content': self.content,
            'created': self.created,
            'last_accessed': self.last_accessed,
            'importance': self.importance,
            'kind': self.kind,
            'embedding': list(self.embedding) if self.embedding is not None else None,
            'location': self.location.to_dict() if self.location else None,
            'citations': list(self.citations),
            'level': self.level,
            'tags': list(self.tags),
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryRecord':
        """create from dict (for deserialization)"""
        values = dict(data)
        values['location'] = Position.from_dict(values.get('location'))
        return cls(**values)

    def __str__(self) -> str:
        return f"[{self.kind}] {self.content[:50]}... (importance={self.importance})"

    def __repr__(self) -> str:
        return f"MemoryRecord(id={self.record_id}, kind={self.kind}, importance={self.importance})"
