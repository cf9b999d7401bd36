"""
Relationship memory

Per (owner, other) social state: familiarity [0, 1], affinity [-1, 1] and
trust [0, 1]. Created on first contact, moved by every interaction and
decayed hour by hour when the two agents do not interact.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from mazemind.agent.context import Interaction, format_game_time
from mazemind.errors import ConfigurationError

TAG = __name__


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class RelationshipRecord:
    owner: str
    other: str
    other_name: Optional[str] = None
    familiarity: float = 0.1
    affinity: float = 0.0
    trust: float = 0.5
    interaction_count: int = 0
    last_interaction: Optional[float] = None
    first_met: Optional[float] = None
    history: Deque[str] = field(default_factory=lambda: deque(maxlen=20))

    @property
    def label(self) -> str:
        if self.familiarity < 0.3:
            closeness = "stranger"
        elif self.familiarity < 0.7:
            closeness = "acquaintance"
        else:
            closeness = "well known"
        if self.affinity > 0.3:
            return f"friendly {closeness}"
        if self.affinity < -0.3:
            return f"hostile {closeness}"
        return closeness

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner': self.owner,
            'other': self.other,
            'other_name': self.other_name,
            'familiarity': self.familiarity,
            'affinity': self.affinity,
            'trust': self.trust,
            'interaction_count': self.interaction_count,
            'last_interaction': self.last_interaction,
            'first_met': self.first_met,
            'history': list(self.history),
            'history_limit': self.history.maxlen,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RelationshipRecord':
        values = dict(data)
        limit = values.pop('history_limit', None) or 20
        values['history'] = deque(values.get('history', []), maxlen=limit)
        return cls(**values)


class RelationshipMemory:
    """relationships of one agent with every other agent it has met"""

    def __init__(
        self,
        owner: str,
        initial_familiarity: float = 0.1,
        initial_affinity: float = 0.0,
        initial_trust: float = 0.5,
        familiarity_gain: float = 0.05,
        affinity_step: float = 0.1,
        trust_gain: float = 0.02,
        decay_factor: float = 0.99,
        affinity_decay_factor: float = 1.0,
        history_limit: int = 20,
    ):
        if not 0 < decay_factor <= 1 or not 0 < affinity_decay_factor <= 1:
            raise ConfigurationError("decay factors must be within (0, 1]")
        if history_limit <= 0:
            raise ConfigurationError("history_limit must be positive")

        self.owner = owner
        self.initial_familiarity = initial_familiarity
        self.initial_affinity = initial_affinity
        self.initial_trust = initial_trust
        self.familiarity_gain = familiarity_gain
        self.affinity_step = affinity_step
        self.trust_gain = trust_gain
        self.decay_factor = decay_factor
        self.affinity_decay_factor = affinity_decay_factor
        self.history_limit = history_limit

        self._records: Dict[str, RelationshipRecord] = {}

    def record_interaction(self, interaction: Interaction) -> RelationshipRecord:
        """update (or create, on first contact) the relationship with interaction.other_id"""
        record = self._records.get(interaction.other_id)
        summary = f"{format_game_time(interaction.timestamp)} {interaction.interaction_type.value}"
        if interaction.summary:
            summary = f"{summary}: {interaction.summary}"

        if record is None:
            record = RelationshipRecord(
                owner=self.owner,
                other=interaction.other_id,
                other_name=interaction.other_name,
                familiarity=_clamp(self.initial_familiarity, 0.0, 1.0),
                affinity=_clamp(self.initial_affinity, -1.0, 1.0),
                trust=_clamp(self.initial_trust, 0.0, 1.0),
                interaction_count=1,
                last_interaction=interaction.timestamp,
                first_met=interaction.timestamp,
                history=deque([summary], maxlen=self.history_limit),
            )
            self._records[interaction.other_id] = record

            logger.bind(tag=TAG).info(f"[{self.owner}] first contact with {interaction.other_id}")
            return record

        sentiment = _clamp(interaction.sentiment, -1.0, 1.0)
        record.familiarity = min(1.0, record.familiarity + self.familiarity_gain)
        record.affinity = _clamp(record.affinity + self.affinity_step * sentiment, -1.0, 1.0)
        if interaction.interaction_type.cooperative:
            record.trust = _clamp(record.trust + self.trust_gain, 0.0, 1.0)

        record.interaction_count += 1
        if record.last_interaction is None or interaction.timestamp > record.last_interaction:
            record.last_interaction = interaction.timestamp
        if interaction.other_name:
            record.other_name = interaction.other_name
        record.history.append(summary)

        logger.bind(tag=TAG).debug(
            f"[{self.owner}] {interaction.interaction_type.value} with {interaction.other_id}: "
            f"familiarity={record.familiarity:.2f}, affinity={record.affinity:.2f}, trust={record.trust:.2f}"
        )
        return record

    def apply_decay(self, elapsed_hours: float, now: float) -> int:
        """
        decay relationships with no interaction in the last elapsed_hours

        familiarity and trust are multiplied by decay_factor ** elapsed_hours;
        affinity only moves when affinity_decay_factor < 1. Returns the number
        of decayed records.
        """
        if elapsed_hours <= 0:
            return 0

        period_start = now - elapsed_hours * 3600
        factor = self.decay_factor ** elapsed_hours
        affinity_factor = self.affinity_decay_factor ** elapsed_hours

        decayed = 0
        for record in self._records.values():
            if record.last_interaction is not None and record.last_interaction >= period_start:
                continue
            record.familiarity = _clamp(record.familiarity * factor, 0.0, 1.0)
            record.trust = _clamp(record.trust * factor, 0.0, 1.0)
            record.affinity = _clamp(record.affinity * affinity_factor, -1.0, 1.0)
            decayed += 1

        if decayed:
            logger.bind(tag=TAG).debug(f"[{self.owner}] decayed {decayed} relationships over {elapsed_hours}h")
        return decayed

    def get(self, other: str) -> Optional[RelationshipRecord]:
        return self._records.get(other)

    def known_others(self) -> List[str]:
        return list(self._records)

    def closest(self, n: int = 3) -> List[RelationshipRecord]:
        """most familiar relationships first, affinity as tie-breaker"""
        return sorted(self._records.values(), key=lambda r: (r.familiarity, r.affinity), reverse=True)[:n]

    def summary(self, other: str) -> str:
        record = self._records.get(other)
        if record is None:
            return f"{other}: never met"
        name = record.other_name or record.other
        return (
            f"{name}: {record.label} (familiarity {record.familiarity:.2f}, "
            f"affinity {record.affinity:+.2f}, trust {record.trust:.2f}, "
            f"{record.interaction_count} interactions)"
        )

    def summaries(self) -> List[str]:
        return [self.summary(other) for other in self._records]

    def __len__(self) -> int:
        return len(self._records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner': self.owner,
            'relationships': [record.to_dict() for record in self._records.values()],
        }

    def load_dict(self, data: Dict[str, Any]):
        self._records = {}
        for record_data in data.get('relationships', []):
            record = RelationshipRecord.from_dict(record_data)
            self._records[record.other] = record
