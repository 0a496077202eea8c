"""
Council realtime protocol — typed server events and the per-session event bus.

Every event is a Pydantic model with a literal ``type`` tag and a protocol
``version``; together they form a closed tagged union (``ServerEvent``).
Field names are snake_case in Python and camelCase on the wire.
"""
import logging
from collections import defaultdict
from typing import Annotated, Any, Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

logger = logging.getLogger("council.engine.events")

PROTOCOL_VERSION = 1


class CouncilEvent(BaseModel):
    """Base for every server → client event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: int = PROTOCOL_VERSION

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class CreatedEvent(CouncilEvent):
    type: Literal["created"] = "created"
    session_id: str
    session_config: dict[str, Any] = Field(alias="config")


class StateEvent(CouncilEvent):
    """Full session snapshot, sent to a client when it joins."""
    type: Literal["state"] = "state"
    session_id: str
    session: dict[str, Any]


class MessageEvent(CouncilEvent):
    type: Literal["message"] = "message"
    session_id: str
    message: dict[str, Any]


class AgentEvent(CouncilEvent):
    type: Literal["agent"] = "agent"
    session_id: str
    role: str
    status: str


class AgentsReadyEvent(CouncilEvent):
    type: Literal["agents_ready"] = "agents_ready"
    session_id: str
    agents: list[dict[str, Any]]


class RoundEvent(CouncilEvent):
    type: Literal["round"] = "round"
    session_id: str
    round_index: int
    round: dict[str, Any]
    total_rounds: int


class TimerEvent(CouncilEvent):
    type: Literal["timer"] = "timer"
    session_id: str
    timer_state: dict[str, Any]


class StatusEvent(CouncilEvent):
    type: Literal["status"] = "status"
    session_id: str
    status: str


class ErrorEvent(CouncilEvent):
    type: Literal["error"] = "error"
    error: str
    details: str | None = None
    session_id: str | None = None


class ListEvent(CouncilEvent):
    type: Literal["list"] = "list"
    sessions: list[dict[str, Any]]


class PongEvent(CouncilEvent):
    type: Literal["pong"] = "pong"


ServerEvent = Annotated[
    Union[
        CreatedEvent,
        StateEvent,
        MessageEvent,
        AgentEvent,
        AgentsReadyEvent,
        RoundEvent,
        TimerEvent,
        StatusEvent,
        ErrorEvent,
        ListEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

server_event_adapter: TypeAdapter[ServerEvent] = TypeAdapter(ServerEvent)


def parse_event(raw: str | bytes) -> CouncilEvent:
    """Decode a wire event (used by clients and tests)."""
    return server_event_adapter.validate_json(raw)


class Subscriber(Protocol):
    """Anything that can receive events for the sessions it joined."""

    def deliver(self, event: CouncilEvent) -> None: ...


class EventBus:
    """
    Subscriber registry keyed by session id.

    ``publish`` is synchronous and called from a session worker; subscribers
    must only enqueue (see ``gateway.WebSocketSubscriber``). Events reach each
    subscriber in publish order.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, session_id: str, subscriber: Subscriber) -> bool:
        """Add a subscriber. Returns False if it was already subscribed."""
        subscribers = self._subscribers[session_id]
        if subscriber in subscribers:
            return False
        subscribers.append(subscriber)
        return True

    def unsubscribe(self, session_id: str, subscriber: Subscriber) -> bool:
        subscribers = self._subscribers.get(session_id)
        if not subscribers or subscriber not in subscribers:
            return False
        subscribers.remove(subscriber)
        if not subscribers:
            del self._subscribers[session_id]
        return True

    def unsubscribe_all(self, subscriber: Subscriber) -> list[str]:
        """Drop a subscriber from every session (connection closed)."""
        left = [sid for sid, subs in self._subscribers.items() if subscriber in subs]
        for session_id in left:
            self.unsubscribe(session_id, subscriber)
        return left

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def publish(self, session_id: str, event: CouncilEvent) -> None:
        for subscriber in list(self._subscribers.get(session_id, ())):
            try:
                subscriber.deliver(event)
            except Exception as e:
                logger.error(
                    "Failed to deliver %s event for %s: %s",
                    getattr(event, "type", "?"), session_id, e,
                )
