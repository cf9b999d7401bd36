"""
Engine configuration

Every tunable constant of the cognitive engine lives here as a dataclass
default. The values are defaults, not requirements: they can be overridden
from a YAML/JSON file (load_config) or a plain dict (EngineConfig.from_dict).
"""

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from mazemind.errors import ConfigurationError


def _require(condition: bool, message: str):
    if not condition:
        raise ConfigurationError(message)


@dataclass
class MemoryConfig:
    capacity: int = 10000
    retention_recency_weight: float = 0.4
    retention_importance_weight: float = 0.6
    half_life_hours: float = 24.0
    memory_file: Optional[str] = None

    def validate(self):
        _require(self.capacity > 0, f"memory capacity must be positive, got {self.capacity}")
        _require(self.retention_recency_weight >= 0, "retention_recency_weight must be >= 0")
        _require(self.retention_importance_weight >= 0, "retention_importance_weight must be >= 0")
        _require(self.half_life_hours > 0, "half_life_hours must be positive")


@dataclass
class RetrievalConfig:
    recency_weight: float = 1.0
    importance_weight: float = 1.0
    relevance_weight: float = 1.0
    half_life_hours: float = 24.0
    top_k: int = 10
    touch_on_retrieve: bool = True

    def validate(self):
        for name in ("recency_weight", "importance_weight", "relevance_weight"):
            _require(getattr(self, name) >= 0, f"{name} must be >= 0")
        _require(self.half_life_hours > 0, "half_life_hours must be positive")
        _require(self.top_k > 0, "top_k must be positive")


@dataclass
class ReflectionConfig:
    enabled: bool = True
    threshold: float = 150
    fallback_interval_hours: float = 2.0
    recent_window: int = 100
    importance_floor: float = 5
    questions_per_reflection: int = 3
    evidence_per_question: int = 15
    reflections_per_meta: int = 5
    max_depth: int = 3

    def validate(self):
        _require(self.threshold > 0, f"reflection threshold must be positive, got {self.threshold}")
        _require(self.fallback_interval_hours > 0, "fallback_interval_hours must be positive")
        _require(self.recent_window > 0, "recent_window must be positive")
        _require(1 <= self.importance_floor <= 10, "importance_floor must be within [1, 10]")
        _require(1 <= self.questions_per_reflection <= 5, "questions_per_reflection must be within [1, 5]")
        _require(10 <= self.evidence_per_question <= 20, "evidence_per_question must be within [10, 20]")
        _require(self.reflections_per_meta >= 2, "reflections_per_meta must be at least 2")
        _require(self.max_depth >= 1, "max_depth must be at least 1")


@dataclass
class PlanningConfig:
    hourly_plan_count: int = 3
    hour_duration: float = 3600
    action_duration: float = 300
    critical_hunger: float = 20
    critical_thirst: float = 15
    critical_energy: float = 10
    divergence_factor: float = 1.5
    overrun_factor: float = 3.0
    temperature: float = 0.7
    max_tokens: int = 300

    def validate(self):
        _require(self.hourly_plan_count > 0, "hourly_plan_count must be positive")
        _require(self.action_duration > 0, "action_duration must be positive")
        _require(self.hour_duration > 0, "hour_duration must be positive")
        _require(
            self.hour_duration % self.action_duration == 0,
            "hour_duration must be a whole multiple of action_duration",
        )
        _require(self.divergence_factor > 1.0, "divergence_factor must be greater than 1")
        _require(self.overrun_factor > 1.0, "overrun_factor must be greater than 1")

    @property
    def actions_per_hour(self) -> int:
        return int(self.hour_duration // self.action_duration)


@dataclass
class RelationshipConfig:
    initial_familiarity: float = 0.1
    initial_affinity: float = 0.0
    initial_trust: float = 0.5
    familiarity_gain: float = 0.05
    affinity_step: float = 0.1
    trust_gain: float = 0.02
    decay_factor: float = 0.99
    affinity_decay_factor: float = 1.0
    history_limit: int = 20

    def validate(self):
        _require(0 <= self.initial_familiarity <= 1, "initial_familiarity must be within [0, 1]")
        _require(-1 <= self.initial_affinity <= 1, "initial_affinity must be within [-1, 1]")
        _require(0 <= self.initial_trust <= 1, "initial_trust must be within [0, 1]")
        _require(0 < self.decay_factor <= 1, "decay_factor must be within (0, 1]")
        _require(0 < self.affinity_decay_factor <= 1, "affinity_decay_factor must be within (0, 1]")
        _require(self.history_limit > 0, "history_limit must be positive")


@dataclass
class GenerationConfig:
    provider: str = "heuristic"  # heuristic, openai
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    # per generation call; job_timeout bounds a whole plan or reflection job
    timeout: float = 10.0
    job_timeout: float = 120.0

    def validate(self):
        _require(self.provider in ("heuristic", "openai"), f"unknown generation provider '{self.provider}'")
        _require(self.timeout > 0, "generation timeout must be positive")
        _require(self.job_timeout >= self.timeout, "job_timeout must be at least the per-call timeout")


@dataclass
class EmbeddingConfig:
    provider: str = "dummy"  # dummy, openai, local
    model: str = "text-embedding-3-small"
    dimension: int = 256
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    retry_after: float = 60.0

    def validate(self):
        _require(self.provider in ("dummy", "openai", "local"), f"unknown embedding provider '{self.provider}'")
        _require(self.dimension > 0, "embedding dimension must be positive")


@dataclass
class EngineConfig:
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    reflection: ReflectionConfig = field(default_factory=ReflectionConfig)
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    relationships: RelationshipConfig = field(default_factory=RelationshipConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)

    def validate(self) -> "EngineConfig":
        for section in fields(self):
            getattr(self, section.name).validate()
        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineConfig":
        """Build a config from nested dicts; unknown keys are rejected."""
        data = data or {}
        kwargs = {}
        for name, values in data.items():
            if name not in _SECTION_TYPES:
                raise ConfigurationError(f"unknown config section '{name}'")
            section_cls = _SECTION_TYPES[name]
            known = {f.name for f in fields(section_cls)}
            unknown = set(values or {}) - known
            if unknown:
                raise ConfigurationError(f"unknown keys in '{name}': {sorted(unknown)}")
            kwargs[name] = section_cls(**(values or {}))
        return cls(**kwargs).validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTION_TYPES = {
    "memory": MemoryConfig,
    "retrieval": RetrievalConfig,
    "reflection": ReflectionConfig,
    "planning": PlanningConfig,
    "relationships": RelationshipConfig,
    "generation": GenerationConfig,
    "embedding": EmbeddingConfig,
}


def load_config(path: Union[str, Path]) -> EngineConfig:
    """Load an EngineConfig from a YAML or JSON file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return EngineConfig.from_dict(data)
