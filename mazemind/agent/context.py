"""
Perception context and action intent

The world collaborator hands a PerceptionContext to the engine every tick and
polls an ActionIntent back. Both are plain value objects; the engine never
mutates a context it receives.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Position:
    x: int
    y: int

    def manhattan(self, other: "Position") -> int:
        return abs(self.x - other.x) + abs(self.y - other.y)

    def euclidean(self, other: "Position") -> float:
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2) ** 0.5

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Position"]:
        if data is None:
            return None
        return cls(x=int(data["x"]), y=int(data["y"]))


@dataclass(frozen=True)
class SurvivalMetrics:
    """Resources on a 0-100 scale, 100 = fully satisfied. Stress 0 = calm."""

    hunger: float = 100.0
    thirst: float = 100.0
    energy: float = 100.0
    stress: float = 0.0

    def needs(self) -> Dict[str, float]:
        return {"hunger": self.hunger, "thirst": self.thirst, "energy": self.energy}

    def most_depleted(self) -> Tuple[str, float]:
        return min(self.needs().items(), key=lambda item: item[1])


class InteractionType(str, Enum):
    OBSERVATION = "observation"
    PROXIMITY = "proximity"
    ITEM_COMPETITION = "item_competition"
    ITEM_TAKEN = "item_taken"
    DIALOGUE = "dialogue"
    COORDINATION = "coordination"
    HELPING = "helping"
    FIRST_MEETING = "first_meeting"

    @property
    def cooperative(self) -> bool:
        return self in (InteractionType.HELPING, InteractionType.COORDINATION)


@dataclass(frozen=True)
class Interaction:
    other_id: str
    interaction_type: InteractionType
    timestamp: float
    sentiment: float = 0.0  # -1 (hostile) .. 1 (friendly)
    summary: str = ""
    other_name: Optional[str] = None
    location: Optional[Position] = None


@dataclass(frozen=True)
class VisibleItem:
    item_type: str
    position: Position


@dataclass(frozen=True)
class Observation:
    content: str
    importance: Optional[float] = None
    location: Optional[Position] = None


@dataclass(frozen=True)
class PerceptionContext:
    agent_id: str
    game_time: float
    position: Position
    survival: SurvivalMetrics = field(default_factory=SurvivalMetrics)
    nearby_entities: Tuple[str, ...] = ()
    visible_items: Tuple[VisibleItem, ...] = ()
    observations: Tuple[Observation, ...] = ()
    interactions: Tuple[Interaction, ...] = ()
    exploration_progress: float = 0.0
    time_of_day: str = "day"


@dataclass(frozen=True)
class ActionIntent:
    """What the actuation collaborator should do this tick"""

    action_id: Optional[str]
    action_type: str
    description: str
    target_position: Optional[Position] = None
    target_item: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type,
            "description": self.description,
            "target_position": self.target_position.to_dict() if self.target_position else None,
            "target_item": self.target_item,
        }


def format_game_time(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def describe_items(items: List[VisibleItem], limit: int = 3) -> str:
    if not items:
        return "None visible"
    return ", ".join(f"{item.item_type} at ({item.position.x}, {item.position.y})" for item in items[:limit])
