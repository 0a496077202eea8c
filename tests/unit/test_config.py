"""
Unit tests for council_engine.config.EngineConfig.

Tests:
- Defaults
- COUNCIL_* environment overrides
- Validation errors
"""
import pytest
from pydantic import ValidationError

from council_engine.config import DEFAULT_ROLES, EngineConfig


def test_defaults():
    config = EngineConfig()
    assert config.council_roles == DEFAULT_ROLES
    assert config.tick_interval_seconds == 1.0
    assert config.wrap_up_threshold_seconds == 30
    assert config.human_identity == "human"
    assert config.generator_backend == "litellm"
    assert set(config.model_tiers) >= {"opus", "sonnet"}


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("COUNCIL_WRAP_UP_THRESHOLD_SECONDS", "10")
    monkeypatch.setenv("COUNCIL_GENERATOR_BACKEND", "remote")
    monkeypatch.setenv("COUNCIL_COUNCIL_ROLES", '["visionary", "critic"]')

    config = EngineConfig.from_env()
    assert config.wrap_up_threshold_seconds == 10
    assert config.generator_backend == "remote"
    assert config.council_roles == ["visionary", "critic"]


@pytest.mark.parametrize("field, value", [
    ("tick_interval_seconds", 0),
    ("wrap_up_threshold_seconds", -1),
    ("default_temperature", 3.5),
    ("council_roles", []),
    ("council_roles", ["critic", "critic"]),
    ("generator_backend", "carrier-pigeon"),
])
def test_invalid_values(field, value):
    with pytest.raises(ValidationError):
        EngineConfig(**{field: value})
