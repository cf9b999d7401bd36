"""
Tests for engine configuration loading and validation.
"""

import json

import pytest
import yaml

from mazemind.config import EngineConfig, load_config
from mazemind.errors import ConfigurationError


class TestEngineConfig:

    def test_defaults_are_valid(self):
        config = EngineConfig().validate()
        assert config.memory.capacity == 10000
        assert config.reflection.threshold == 150
        assert config.planning.actions_per_hour == 12
        assert config.generation.timeout == 10.0
        assert config.generation.job_timeout == 120.0

    def test_partial_override(self):
        config = EngineConfig.from_dict({"reflection": {"threshold": 80}, "planning": {"hourly_plan_count": 2}})
        assert config.reflection.threshold == 80
        assert config.reflection.fallback_interval_hours == 2.0
        assert config.planning.hourly_plan_count == 2

    @pytest.mark.parametrize("data", [
        {"memory": {"capacity": 0}},
        {"reflection": {"threshold": -1}},
        {"retrieval": {"recency_weight": -0.5}},
        {"planning": {"action_duration": 7}},
        {"relationships": {"decay_factor": 0}},
        {"generation": {"timeout": 0}},
        {"generation": {"timeout": 30, "job_timeout": 20}},
        {"embedding": {"provider": "word2vec"}},
        {"unknown": {}},
        {"memory": {"size": 10}},
    ])
    def test_invalid_values_are_rejected(self, data):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_dict(data)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"memory": {"capacity": -1}})

    def test_round_trip(self):
        config = EngineConfig.from_dict({"embedding": {"dimension": 32}})
        assert EngineConfig.from_dict(config.to_dict()) == config


class TestLoadConfig:

    def test_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(yaml.safe_dump({"memory": {"capacity": 50}, "retrieval": {"top_k": 3}}), encoding="utf-8")
        config = load_config(path)
        assert config.memory.capacity == 50
        assert config.retrieval.top_k == 3

    def test_json(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"generation": {"timeout": 2.5}}), encoding="utf-8")
        assert load_config(str(path)).generation.timeout == 2.5

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == EngineConfig()

    def test_non_mapping_is_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(path)
