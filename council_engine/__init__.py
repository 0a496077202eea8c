"""
Council Engine — real-time, round-based multi-agent discussion sessions.

Components:
- Persona store (JSON files per role)
- Utterance generators (litellm, remote agent-session gateway)
- Round timer (resumable per-session countdown)
- Session state machine (single-writer mailbox per session)
- Turn scheduler (sequential agent turns)
- Realtime gateway (WebSocket fan-out of typed events)
"""

__version__ = "1.0.0"

from council_engine.config import EngineConfig
from council_engine.exceptions import (
    CouncilValidationError,
    EngineError,
    GenerationError,
    InvalidStateError,
    PersonaNotFoundError,
    ProvisioningError,
    SessionNotFoundError,
)

__all__ = [
    "EngineConfig",
    "EngineError",
    "CouncilValidationError",
    "SessionNotFoundError",
    "PersonaNotFoundError",
    "InvalidStateError",
    "ProvisioningError",
    "GenerationError",
]
