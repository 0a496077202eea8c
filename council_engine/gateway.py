"""
Realtime Gateway — WebSocket surface of the council engine.

Protocol (JSON frames, camelCase fields; binary frames must be UTF-8):
  Client → Server:
    {"type": "create", "template": "quick", "customRounds": [...], "contextPrompt": "..."}
    {"type": "join", "sessionId": "council-..."}     {"type": "leave", "sessionId": "..."}
    {"type": "start" | "pause" | "resume" | "advance" | "end", "sessionId": "..."}
    {"type": "send_message", "sessionId": "...", "content": "Hello council"}
    {"type": "list_sessions"}
    {"type": "ping"}

  Server → Client: see ``council_engine.events`` (created, state, message,
  agent, agents_ready, round, timer, status, error, list, pong).

Malformed or rejected commands produce an ``error`` event for the sender
only. The connection stays open whatever a command does.
"""
import asyncio
import json
import logging
import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from council_engine.config import EngineConfig
from council_engine.events import (
    CouncilEvent,
    CreatedEvent,
    ErrorEvent,
    EventBus,
    ListEvent,
    PongEvent,
    StateEvent,
)
from council_engine.exceptions import CouncilValidationError, EngineError
from council_engine.logging_config import (
    bind_connection,
    log_command,
    new_correlation_id,
    unbind_connection,
)
from council_engine.manager import CouncilManager
from council_engine.session import Advance, End, Pause, Resume, SendMessage, Start

logger = logging.getLogger("council.engine.gateway")


# ── Client commands ───────────────────────────────────────────────────

class ClientCommand(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionCommand(ClientCommand):
    session_id: str = Field(min_length=1)


class JoinCommand(SessionCommand):
    type: Literal["join"]


class LeaveCommand(SessionCommand):
    type: Literal["leave"]


class CreateCommand(ClientCommand):
    type: Literal["create"]
    template: str | None = None
    custom_rounds: list[Any] | None = None
    context_prompt: str | None = None


class StartCommand(SessionCommand):
    type: Literal["start"]


class SendMessageCommand(SessionCommand):
    type: Literal["send_message"]
    content: str


class PauseCommand(SessionCommand):
    type: Literal["pause"]


class ResumeCommand(SessionCommand):
    type: Literal["resume"]


class AdvanceCommand(SessionCommand):
    type: Literal["advance"]


class EndCommand(SessionCommand):
    type: Literal["end"]


class ListSessionsCommand(ClientCommand):
    type: Literal["list_sessions"]


class PingCommand(ClientCommand):
    type: Literal["ping"]


ClientMessage = Annotated[
    Union[
        JoinCommand,
        LeaveCommand,
        CreateCommand,
        StartCommand,
        SendMessageCommand,
        PauseCommand,
        ResumeCommand,
        AdvanceCommand,
        EndCommand,
        ListSessionsCommand,
        PingCommand,
    ],
    Field(discriminator="type"),
]

client_command_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_command(raw: str) -> ClientCommand:
    """
    Decode and validate one client frame.

    Raises:
        CouncilValidationError: invalid JSON or wrong shape.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise CouncilValidationError("Invalid JSON")
    try:
        return client_command_adapter.validate_python(data)
    except ValidationError as e:
        raise CouncilValidationError("Invalid command", details=_format_validation_error(e))


# ── Per-connection subscriber ─────────────────────────────────────────

class WebSocketSubscriber:
    """
    One connected client. ``deliver`` only enqueues; a writer task drains
    the queue so a slow socket never blocks a session worker.
    """

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self._outbox: asyncio.Queue[CouncilEvent | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None

    def deliver(self, event: CouncilEvent) -> None:
        self._outbox.put_nowait(event)

    def start(self) -> None:
        self._writer = asyncio.create_task(
            self._write(), name=f"council-ws-writer-{self.connection_id}"
        )

    async def close(self) -> None:
        self._outbox.put_nowait(None)
        if self._writer is None:
            return
        try:
            await asyncio.wait_for(self._writer, timeout=5.0)
        except asyncio.TimeoutError:
            logger.debug("Writer for %s did not drain in time", self.connection_id)
        except asyncio.CancelledError:
            pass

    async def _write(self) -> None:
        while True:
            event = await self._outbox.get()
            if event is None:
                return
            if self.websocket.client_state != WebSocketState.CONNECTED:
                return
            try:
                await self.websocket.send_text(event.to_json())
            except Exception as e:
                logger.debug("WS send failed for %s: %s", self.connection_id, e)
                return


# ── Gateway ───────────────────────────────────────────────────────────

class RealtimeGateway:
    """
    Routes client commands to sessions and session events to clients.

    Usage:
        gateway = RealtimeGateway(config, manager, bus)

        @router.websocket("/ws/council")
        async def council_ws(websocket: WebSocket):
            await gateway.handle_connection(websocket)
    """

    def __init__(self, config: EngineConfig, manager: CouncilManager, bus: EventBus):
        self.config = config
        self.manager = manager
        self.bus = bus
        self._connections: dict[str, WebSocketSubscriber] = {}
        self._handlers = {
            JoinCommand: self._join,
            LeaveCommand: self._leave,
            CreateCommand: self._create,
            StartCommand: self._start,
            SendMessageCommand: self._send_message,
            PauseCommand: self._pause,
            ResumeCommand: self._resume,
            AdvanceCommand: self._advance,
            EndCommand: self._end,
            ListSessionsCommand: self._list_sessions,
            PingCommand: self._ping,
        }

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def handle_connection(self, websocket: WebSocket) -> None:
        """
        Lifecycle:
        1. Accept and bind a correlation id
        2. Start writer + keepalive tasks
        3. Apply commands in arrival order until disconnect
        4. Unsubscribe everywhere and drain
        """
        await websocket.accept()

        connection_id = new_correlation_id()
        bind_connection(connection_id)

        subscriber = WebSocketSubscriber(websocket, connection_id)
        subscriber.start()
        self._connections[connection_id] = subscriber
        keepalive_task = asyncio.create_task(self._keepalive(subscriber))
        logger.info("Council WebSocket connected: %s", connection_id)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                await self.handle_frame(subscriber, message)
        except WebSocketDisconnect:
            logger.info("Council WebSocket disconnected: %s", connection_id)
        except Exception as e:
            logger.error("Council WebSocket error in %s: %s", connection_id, e)
        finally:
            keepalive_task.cancel()
            left = self.bus.unsubscribe_all(subscriber)
            self._connections.pop(connection_id, None)
            await subscriber.close()
            unbind_connection()
            logger.info("Council WebSocket cleaned up: %s (left %d sessions)", connection_id, len(left))

    async def handle_frame(self, subscriber: WebSocketSubscriber, message: dict[str, Any]) -> None:
        """Text frames carry JSON commands; binary frames must be UTF-8 JSON too."""
        raw = message.get("text")
        if raw is None:
            data = message.get("bytes") or b""
            try:
                raw = data.decode("utf-8")
            except UnicodeDecodeError:
                subscriber.deliver(ErrorEvent(
                    error="Invalid frame",
                    details="binary frames must contain UTF-8 encoded JSON",
                ))
                return
        await self.handle_raw(subscriber, raw)

    async def handle_raw(self, subscriber: WebSocketSubscriber, raw: str) -> None:
        """Parse, apply and answer one client frame."""
        try:
            command = parse_command(raw)
        except CouncilValidationError as e:
            subscriber.deliver(ErrorEvent(error=e.message, details=e.details))
            return

        session_id = getattr(command, "session_id", None)
        start = time.monotonic()
        ok = False
        try:
            await self._handlers[type(command)](subscriber, command)
            ok = True
        except EngineError as e:
            subscriber.deliver(ErrorEvent(error=e.message, details=e.details, session_id=session_id))
        except Exception:
            logger.exception("Unhandled error for %s command", command.type)
            subscriber.deliver(ErrorEvent(error="Internal error", session_id=session_id))
        finally:
            log_command(command.type, session_id, ok, start)

    # ── Command handlers ──────────────────────────────────────────────

    async def _join(self, subscriber: WebSocketSubscriber, cmd: JoinCommand) -> None:
        self.bus.subscribe(cmd.session_id, subscriber)
        if self.manager.exists(cmd.session_id):
            subscriber.deliver(StateEvent(
                session_id=cmd.session_id,
                session=self.manager.snapshot(cmd.session_id),
            ))

    async def _leave(self, subscriber: WebSocketSubscriber, cmd: LeaveCommand) -> None:
        self.bus.unsubscribe(cmd.session_id, subscriber)

    async def _create(self, subscriber: WebSocketSubscriber, cmd: CreateCommand) -> None:
        machine = await self.manager.create(
            template=cmd.template,
            custom_rounds=cmd.custom_rounds,
            context_prompt=cmd.context_prompt,
        )
        session = machine.session
        self.bus.subscribe(session.id, subscriber)
        subscriber.deliver(CreatedEvent(
            session_id=session.id,
            session_config=session.config.to_dict(session.wrap_up_sent),
        ))

    async def _start(self, subscriber: WebSocketSubscriber, cmd: StartCommand) -> None:
        await self.manager.dispatch(cmd.session_id, Start())

    async def _send_message(self, subscriber: WebSocketSubscriber, cmd: SendMessageCommand) -> None:
        await self.manager.dispatch(cmd.session_id, SendMessage(cmd.content))

    async def _pause(self, subscriber: WebSocketSubscriber, cmd: PauseCommand) -> None:
        await self.manager.dispatch(cmd.session_id, Pause(paused_by=self.config.human_identity))

    async def _resume(self, subscriber: WebSocketSubscriber, cmd: ResumeCommand) -> None:
        await self.manager.dispatch(cmd.session_id, Resume())

    async def _advance(self, subscriber: WebSocketSubscriber, cmd: AdvanceCommand) -> None:
        await self.manager.dispatch(cmd.session_id, Advance())

    async def _end(self, subscriber: WebSocketSubscriber, cmd: EndCommand) -> None:
        await self.manager.dispatch(cmd.session_id, End())

    async def _list_sessions(self, subscriber: WebSocketSubscriber, cmd: ListSessionsCommand) -> None:
        subscriber.deliver(ListEvent(sessions=self.manager.list_sessions()))

    async def _ping(self, subscriber: WebSocketSubscriber, cmd: PingCommand) -> None:
        subscriber.deliver(PongEvent())

    async def _keepalive(self, subscriber: WebSocketSubscriber) -> None:
        """Send pong every ws_ping_interval seconds to keep connection alive."""
        while True:
            await asyncio.sleep(self.config.ws_ping_interval)
            if subscriber.websocket.client_state != WebSocketState.CONNECTED:
                return
            subscriber.deliver(PongEvent())
