"""Engine configuration — all settings from environment (COUNCIL_* variables)."""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ROLES = [
    "visionary",
    "pragmatist",
    "critic",
    "behavioral-realist",
    "pattern-archaeologist",
    "systems-architect",
    "cognitive-load",
]


class EngineConfig(BaseSettings):
    """Runtime configuration for the council engine (validated via Pydantic)."""

    model_config = SettingsConfigDict(env_prefix="COUNCIL_", extra="ignore")

    # Personas
    personas_path: str = str(Path(__file__).parent / "personas")
    council_roles: list[str] = Field(default_factory=lambda: list(DEFAULT_ROLES))
    human_identity: str = "human"

    # Round timer
    tick_interval_seconds: float = 1.0
    wrap_up_threshold_seconds: int = 30

    # Utterance generation
    generator_backend: Literal["litellm", "remote"] = "litellm"
    model_tiers: dict[str, str] = Field(default_factory=lambda: {
        "opus": "anthropic/claude-opus-4-20250514",
        "sonnet": "anthropic/claude-sonnet-4-20250514",
        "haiku": "anthropic/claude-3-5-haiku-20241022",
    })
    default_temperature: float = 0.7
    max_tokens: int = 1024
    generation_timeout_seconds: float = 120.0
    transcript_window: int = 40

    # Remote agent-session gateway (generator_backend="remote")
    remote_gateway_url: str = "http://localhost:18789"
    remote_gateway_token: str = ""

    # Idea bank export on completion (disabled when empty)
    idea_bank_url: str = ""

    # WebSocket
    ws_ping_interval: int = 30

    # HTTP
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    @field_validator("tick_interval_seconds")
    @classmethod
    def validate_tick_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"tick_interval_seconds must be > 0, got {v}")
        return v

    @field_validator("wrap_up_threshold_seconds")
    @classmethod
    def validate_wrap_up_threshold(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"wrap_up_threshold_seconds must be >= 0, got {v}")
        return v

    @field_validator("default_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"Temperature must be 0.0-2.0, got {v}")
        return v

    @field_validator("council_roles")
    @classmethod
    def validate_roles(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("council_roles must name at least one persona")
        if len(set(v)) != len(v):
            raise ValueError("council_roles must not contain duplicates")
        return v

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        return cls()
