"""
Council data model — session aggregate, rounds, agents, messages.

Everything here is plain data. Only CouncilSessionMachine mutates a
CouncilSession; other components read snapshots produced by ``to_dict()``
(camelCase, JSON-ready).
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


class SessionStatus(str, Enum):
    CONFIGURING = "configuring"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class AgentStatus(str, Enum):
    IDLE = "idle"
    TYPING = "typing"
    WAITING = "waiting"


SYSTEM_AUTHOR = "system"


def new_session_id() -> str:
    return f"council-{uuid4().hex[:12]}"


def new_message_id() -> str:
    return f"msg-{uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Round:
    """One named, time-boxed phase of the discussion."""

    name: str
    duration_seconds: int
    prompt: str
    wrap_up_prompt: str | None = None

    def to_dict(self, wrap_up_sent: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "durationSeconds": self.duration_seconds,
            "prompt": self.prompt,
            "wrapUpSent": wrap_up_sent,
        }
        if self.wrap_up_prompt:
            data["wrapUpPrompt"] = self.wrap_up_prompt
        return data


@dataclass(frozen=True)
class SessionConfig:
    """Immutable session configuration."""

    rounds: tuple[Round, ...] = ()
    free_for_all: bool = False
    context_prompt: str | None = None

    @property
    def total_rounds(self) -> int:
        return len(self.rounds)

    def to_dict(self, wrap_up_sent: set[int] | None = None) -> dict[str, Any]:
        sent = wrap_up_sent or set()
        return {
            "rounds": [r.to_dict(i in sent) for i, r in enumerate(self.rounds)],
            "freeForAll": self.free_for_all,
            "contextPrompt": self.context_prompt,
        }


@dataclass
class Persona:
    """Stored behavioural definition for one council role."""

    role: str
    name: str
    emoji: str
    model: str
    core_identity: str
    values: list[str] = field(default_factory=list)
    discomfort: str = ""
    staying_true: str = ""
    response_guidelines: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Persona":
        return cls(
            role=data["role"],
            name=data["name"],
            emoji=data["emoji"],
            model=data["model"],
            core_identity=data["coreIdentity"],
            values=list(data.get("values") or []),
            discomfort=data.get("discomfort", ""),
            staying_true=data.get("stayingTrue", ""),
            response_guidelines=data.get("responseGuidelines", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "name": self.name,
            "emoji": self.emoji,
            "model": self.model,
            "coreIdentity": self.core_identity,
            "values": list(self.values),
            "discomfort": self.discomfort,
            "stayingTrue": self.staying_true,
            "responseGuidelines": self.response_guidelines,
        }


@dataclass
class AgentInstance:
    """A provisioned participant. Only ``status`` changes after start."""

    role: str
    model: str
    emoji: str
    persona: Persona
    status: AgentStatus = AgentStatus.IDLE

    @classmethod
    def from_persona(cls, persona: Persona) -> "AgentInstance":
        return cls(
            role=persona.role,
            model=persona.model,
            emoji=persona.emoji,
            persona=persona,
        )

    @property
    def display_name(self) -> str:
        return self.persona.name or self.role

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "model": self.model,
            "emoji": self.emoji,
            "status": self.status.value,
            "persona": self.persona.to_dict(),
        }


@dataclass(frozen=True)
class CouncilMessage:
    """Immutable transcript entry."""

    id: str
    timestamp: datetime
    author: str
    content: str
    round: int
    reply_to: str | None = None
    is_system_message: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "content": self.content,
            "round": self.round,
            "isSystemMessage": self.is_system_message,
        }
        if self.reply_to:
            data["replyTo"] = self.reply_to
        return data


@dataclass
class TimerState:
    """Snapshot of the round timer, broadcast on every tick."""

    remaining: int
    paused: bool
    current_round: int
    round_name: str
    paused_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "remaining": self.remaining,
            "paused": self.paused,
            "currentRound": self.current_round,
            "roundName": self.round_name,
        }
        if self.paused_by:
            data["pausedBy"] = self.paused_by
        return data


@dataclass
class CouncilSession:
    """The aggregate root for one council discussion."""

    id: str
    config: SessionConfig
    created_at: datetime = field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.CONFIGURING
    agents: dict[str, AgentInstance] = field(default_factory=dict)
    current_round: int = 0
    timer_state: TimerState | None = None
    messages: list[CouncilMessage] = field(default_factory=list)
    output: dict[str, Any] | None = None
    wrap_up_sent: set[int] = field(default_factory=set)

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def terminal_round(self) -> int:
        """``current_round`` once completed; a free-for-all discussion counts as one round."""
        return max(self.config.total_rounds, 1)

    @property
    def current_round_def(self) -> Round | None:
        if self.config.free_for_all:
            return None
        if 0 <= self.current_round < self.config.total_rounds:
            return self.config.rounds[self.current_round]
        return None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "currentRound": self.current_round,
            "totalRounds": self.config.total_rounds,
            "freeForAll": self.config.free_for_all,
            "messageCount": len(self.messages),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "config": self.config.to_dict(self.wrap_up_sent),
            "agents": [a.to_dict() for a in self.agents.values()],
            "messages": [m.to_dict() for m in self.messages],
            "currentRound": self.current_round,
            "timerState": self.timer_state.to_dict() if self.timer_state else None,
            "output": self.output,
        }
