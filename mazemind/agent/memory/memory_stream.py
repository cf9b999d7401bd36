"""
MemoryStore

Append-only log of an agent's memory records, kept in creation order.
Bounded capacity: when the store grows past capacity the records with the
lowest retention score are evicted.
Provide add, lookup, bulk query and persistence.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional
import heapq
import itertools
import json
import os
import time
import uuid

from loguru import logger

from mazemind.agent.context import Position
from mazemind.agent.memory.memory_record import MemoryRecord
from mazemind.errors import ConfigurationError

TAG = __name__

RecordListener = Callable[[MemoryRecord], None]


class MemoryStore:
    """memory store - keep and evict the memory records of one agent"""

    def __init__(
        self,
        agent_id: str,
        capacity: int = 10000,
        retention_recency_weight: float = 0.4,
        retention_importance_weight: float = 0.6,
        half_life_hours: float = 24.0,
        clock: Optional[Callable[[], float]] = None,
        memory_file: Optional[str] = None,
    ):
        """
        initialize memory store

        Args:
            agent_id: owning agent
            capacity: maximum number of records kept
            retention_recency_weight: weight of recency in the eviction score
            retention_importance_weight: weight of importance in the eviction score
            half_life_hours: recency half-life used by the eviction score
            clock: returns the current (game) time in seconds, default wall clock
            memory_file: JSON file used by save()/load() (optional)
        """
        if capacity <= 0:
            raise ConfigurationError(f"memory capacity must be positive, got {capacity}")
        if retention_recency_weight < 0 or retention_importance_weight < 0:
            raise ConfigurationError("retention weights must be >= 0")
        if half_life_hours <= 0:
            raise ConfigurationError("half_life_hours must be positive")

        self.agent_id = agent_id
        self.capacity = capacity
        self.retention_recency_weight = retention_recency_weight
        self.retention_importance_weight = retention_importance_weight
        self.half_life_hours = half_life_hours
        self.clock = clock or time.time
        self.memory_file = memory_file

        # insertion order == creation order
        self._records: Dict[str, MemoryRecord] = {}
        self._listeners: List[RecordListener] = []
        self.evicted_count = 0

    def add_listener(self, listener: RecordListener):
        """call listener(record) after every successful add"""
        self._listeners.append(listener)

    def add(self, record: MemoryRecord) -> MemoryRecord:
        """
        append a record, evicting the lowest-retention records when over capacity

        Args:
            record: a valid MemoryRecord (validation happens at construction)

        Returns:
            the stored record
        """
        self._records[record.record_id] = record

        logger.bind(tag=TAG).debug(
            f"added memory: [{record.kind}] {record.content[:30]}... (importance={record.importance})"
        )

        if len(self._records) > self.capacity:
            self._evict(len(self._records) - self.capacity)

        for listener in self._listeners:
            listener(record)

        return record

    def _new_record(
        self,
        kind: str,
        content: str,
        importance: float,
        location: Optional[Position] = None,
        citations: Optional[List[str]] = None,
        level: int = 0,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        embedding: Optional[List[float]] = None,
    ) -> MemoryRecord:
        current_time = self.clock()
        return MemoryRecord(
            record_id=f"{kind[:3]}_{uuid.uuid4().hex[:12]}",
            content=content,
            created=current_time,
            last_accessed=current_time,
            importance=importance,
            kind=kind,
            embedding=embedding,
            location=location,
            citations=list(citations or []),
            level=level,
            tags=list(tags or []),
            metadata=dict(metadata or {}),
        )

    def add_observation(self, content: str, importance: float, location: Optional[Position] = None, **kwargs) -> MemoryRecord:
        return self.add(self._new_record("observation", content, importance, location=location, **kwargs))

    def add_reflection(self, content: str, importance: float, citations: List[str], level: int = 1, **kwargs) -> MemoryRecord:
        return self.add(self._new_record("reflection", content, importance, citations=citations, level=level, **kwargs))

    def add_plan(self, content: str, importance: float, **kwargs) -> MemoryRecord:
        return self.add(self._new_record("plan", content, importance, **kwargs))

    def retention_score(self, record: MemoryRecord, current_time: Optional[float] = None) -> float:
        """retention = w_r * recency + w_i * importance / 10 (higher = keep)"""
        if current_time is None:
            current_time = self.clock()
        recency = record.get_recency_score(current_time, self.half_life_hours)
        return self.retention_recency_weight * recency + self.retention_importance_weight * record.importance / 10

    def _evict(self, count: int):
        current_time = self.clock()
        victims = heapq.nsmallest(
            count,
            self._records.values(),
            key=lambda r: (self.retention_score(r, current_time), r.created),
        )
        for record in victims:
            del self._records[record.record_id]
        self.evicted_count += len(victims)

        logger.bind(tag=TAG).info(
            f"evicted {len(victims)} memories over capacity {self.capacity} (now: {len(self._records)})"
        )

    def get(self, record_id: str) -> Optional[MemoryRecord]:
        return self._records.get(record_id)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def touch(self, record_id: str, current_time: Optional[float] = None) -> bool:
        """update a record's last access time"""
        record = self._records.get(record_id)
        if record is None:
            return False
        return record.touch(self.clock() if current_time is None else current_time)

    def query(self, predicate: Optional[Callable[[MemoryRecord], bool]] = None) -> Iterator[MemoryRecord]:
        """
        lazy scan over the records present at call time

        The snapshot is taken immediately, so later adds/evictions are not
        visible; the returned iterator can be consumed only once.
        """
        snapshot = tuple(self._records.values())
        if predicate is None:
            return iter(snapshot)
        return (record for record in snapshot if predicate(record))

    def recent(self, n: int = 10, kind: Optional[str] = None) -> List[MemoryRecord]:
        """get the n most recently created records (latest first)"""
        newest_first = sorted(self._records.values(), key=lambda r: r.created, reverse=True)
        if kind is not None:
            newest_first = (r for r in newest_first if r.kind == kind)
        return list(itertools.islice(newest_first, n))

    def by_kind(self, kind: str) -> List[MemoryRecord]:
        return [r for r in self._records.values() if r.kind == kind]

    def near(self, position: Position, radius: float = 3) -> List[MemoryRecord]:
        """records tagged with a location within radius tiles"""
        return [
            r for r in self._records.values()
            if r.location is not None and r.location.euclidean(position) <= radius
        ]

    def missing_embeddings(self) -> List[MemoryRecord]:
        return [r for r in self._records.values() if not r.has_embedding]

    def set_embedding(self, record_id: str, embedding: List[float]) -> bool:
        record = self._records.get(record_id)
        if record is None:
            return False
        record.embedding = embedding
        return True

    def get_statistics(self) -> Dict[str, Any]:
        """get memory statistics"""
        records = list(self._records.values())
        return {
            'total': len(records),
            'observations': sum(1 for r in records if r.kind == "observation"),
            'reflections': sum(1 for r in records if r.kind == "reflection"),
            'plans': sum(1 for r in records if r.kind == "plan"),
            'with_embeddings': sum(1 for r in records if r.has_embedding),
            'avg_importance': round(sum(r.importance for r in records) / len(records), 1) if records else 0,
            'evicted': self.evicted_count,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'agent_id': self.agent_id,
            'capacity': self.capacity,
            'records': [record.to_dict() for record in self._records.values()],
        }

    def load_dict(self, data: Dict[str, Any]):
        """replace the current records with serialized ones"""
        self._records = {}
        for record_data in data.get('records', []):
            record = MemoryRecord.from_dict(record_data)
            self._records[record.record_id] = record
        if len(self._records) > self.capacity:
            self._evict(len(self._records) - self.capacity)

    def save(self, path: Optional[str] = None):
        """save to JSON file"""
        path = path or self.memory_file
        if not path:
            return

        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)

            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)

            logger.bind(tag=TAG).debug(f"memory saved to file: {path}")

        except OSError as e:
            logger.bind(tag=TAG).error(f"failed to save memory to file: {e}")

    def load(self, path: Optional[str] = None):
        """load from JSON file"""
        path = path or self.memory_file
        if not path or not os.path.exists(path):
            logger.bind(tag=TAG).info(f"memory file not found, starting empty memory store: {path}")
            return

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        self.load_dict(data)

        logger.bind(tag=TAG).info(f"loaded {len(self._records)} memory records from {path}")

    def __len__(self) -> int:
        return len(self._records)

    def __str__(self) -> str:
        stats = self.get_statistics()
        return f"MemoryStore(total={stats['total']}, obs={stats['observations']}, ref={stats['reflections']})"
