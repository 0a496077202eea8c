"""
Session State Machine — the single writer of one CouncilSession.

Every mutation is a command object pushed into the session's mailbox and
applied by one worker task, one command at a time:

  operator   ──submit(Start/Pause/Resume/Advance/End/SendMessage)──┐
  timer      ──post(Tick)──────────────────────────────────────────┤──► worker ──► publish(event)
  scheduler  ──submit(NextTurn/FinishTurn)─────────────────────────┘

``submit`` awaits the command's outcome (rejections re-raise in the caller);
``post`` is fire-and-forget.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from council_engine.config import EngineConfig
from council_engine.events import (
    AgentEvent,
    AgentsReadyEvent,
    CouncilEvent,
    MessageEvent,
    RoundEvent,
    StatusEvent,
    TimerEvent,
)
from council_engine.exceptions import (
    CouncilValidationError,
    EngineError,
    InvalidStateError,
    PersonaNotFoundError,
    ProvisioningError,
)
from council_engine.export import IdeaBankExporter
from council_engine.generator import UtteranceGenerator
from council_engine.models import (
    SYSTEM_AUTHOR,
    AgentInstance,
    AgentStatus,
    CouncilMessage,
    CouncilSession,
    SessionStatus,
    new_message_id,
    utcnow,
)
from council_engine.personas import PersonaStore
from council_engine.scheduler import PlannedTurn, TurnGrant, TurnScheduler
from council_engine.summary import fallback_summary, summarize_session
from council_engine.timer import RoundTimer

logger = logging.getLogger("council.engine.session")

_MENTION_RE = re.compile(r"@([a-z0-9][a-z0-9-]*)", re.IGNORECASE)


# ── Commands ──────────────────────────────────────────────────────────

@dataclass
class Start:
    pass


@dataclass
class Pause:
    paused_by: str | None = None


@dataclass
class Resume:
    pass


@dataclass
class Advance:
    pass


@dataclass
class End:
    pass


@dataclass
class SendMessage:
    content: str


@dataclass
class Tick:
    epoch: int


@dataclass
class NextTurn:
    pass


@dataclass
class FinishTurn:
    turn: PlannedTurn
    content: str | None = None
    error: str | None = None


@dataclass
class RecordExport:
    idea_id: str


Publisher = Callable[[str, CouncilEvent], None]


class CouncilSessionMachine:
    """
    Owns one CouncilSession and its timer and scheduler.

    Usage:
        machine = CouncilSessionMachine(session, config=cfg, personas=store,
                                        generator=gen, publish=bus.publish)
        machine.start_worker()
        await machine.submit(Start())
    """

    def __init__(
        self,
        session: CouncilSession,
        *,
        config: EngineConfig,
        personas: PersonaStore,
        generator: UtteranceGenerator,
        publish: Publisher,
        exporter: IdeaBankExporter | None = None,
    ):
        self.session = session
        self._config = config
        self._personas = personas
        self._publish_fn = publish
        self._generator = generator
        self._exporter = exporter

        self._queue: asyncio.Queue[tuple[Any, asyncio.Future | None]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._closed = False
        self._background: set[asyncio.Task] = set()

        self._timer: RoundTimer | None = None
        self._scheduler = TurnScheduler(
            self._generator,
            request_turn=self._request_turn,
            finish_turn=self._finish_turn,
            session_id=session.id,
        )

        self._handlers: dict[type, Callable[[Any], Any]] = {
            Start: self._on_start,
            Pause: self._on_pause,
            Resume: self._on_resume,
            Advance: self._on_advance,
            End: self._on_end,
            SendMessage: self._on_send_message,
            Tick: self._on_tick,
            NextTurn: self._on_next_turn,
            FinishTurn: self._on_finish_turn,
            RecordExport: self._on_record_export,
        }

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def timer(self) -> RoundTimer | None:
        return self._timer

    @property
    def scheduler(self) -> TurnScheduler:
        return self._scheduler

    def snapshot(self) -> dict[str, Any]:
        return self.session.to_dict()

    # ── Mailbox ───────────────────────────────────────────────────────

    def start_worker(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(
                self._run(), name=f"council-worker-{self.session.id}"
            )

    async def submit(self, command: Any) -> Any:
        """Queue a command and wait for it to be applied."""
        if self._closed:
            raise InvalidStateError(f"Session {self.session.id} is shut down")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((command, future))
        return await future

    def post(self, command: Any) -> None:
        """Queue a command without waiting (timer ticks)."""
        if not self._closed:
            self._queue.put_nowait((command, None))

    async def _run(self) -> None:
        while True:
            command, future = await self._queue.get()
            try:
                result = await self._apply(command)
            except EngineError as e:
                if future is None:
                    logger.warning(
                        "Session %s: %s rejected: %s", self.session.id, type(command).__name__, e.message
                    )
                elif not future.done():
                    future.set_exception(e)
            except Exception as e:
                logger.exception(
                    "Session %s: %s failed", self.session.id, type(command).__name__
                )
                if future is not None and not future.done():
                    future.set_exception(e)
            else:
                if future is not None and not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    async def _apply(self, command: Any) -> Any:
        handler = self._handlers.get(type(command))
        if handler is None:
            raise CouncilValidationError(f"Unknown command: {type(command).__name__}")
        result = handler(command)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def aclose(self) -> None:
        """Stop worker, timer, scheduler and background tasks."""
        self._closed = True
        await self._scheduler.aclose()
        await self._generator.release(self.session.id)
        if self._timer is not None:
            await self._timer.aclose()
        for task in list(self._background):
            task.cancel()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if future is not None and not future.done():
                future.set_exception(InvalidStateError(f"Session {self.session.id} is shut down"))

    # ── Operator commands ─────────────────────────────────────────────

    async def _on_start(self, cmd: Start) -> None:
        s = self.session
        if s.status is not SessionStatus.CONFIGURING:
            raise InvalidStateError(f"Cannot start session in status '{s.status.value}'")
        if not s.config.free_for_all and not s.config.rounds:
            raise CouncilValidationError("Session has no rounds to run")

        agents: dict[str, AgentInstance] = {}
        missing: list[str] = []
        for role in self._config.council_roles:
            try:
                persona = await self._personas.get(role)
            except PersonaNotFoundError:
                missing.append(role)
                continue
            agents[role] = AgentInstance.from_persona(persona)
        if missing:
            logger.warning("Session %s: missing personas %s", s.id, missing)
            raise ProvisioningError(
                "Failed to provision agents",
                details=f"missing personas: {', '.join(missing)}",
            )

        s.agents = agents
        s.status = SessionStatus.RUNNING
        s.current_round = 0
        self._publish(AgentsReadyEvent(
            session_id=s.id, agents=[a.to_dict() for a in agents.values()]
        ))
        self._publish_status()

        if not s.config.free_for_all:
            self._timer = RoundTimer(
                on_tick=lambda epoch: self.post(Tick(epoch)),
                tick_interval=self._config.tick_interval_seconds,
                wrap_up_threshold=self._config.wrap_up_threshold_seconds,
                session_id=s.id,
            )
            self._begin_round(0)

        self._scheduler.start()
        logger.info(
            "Session %s started with %d agents (%s)",
            s.id, len(agents),
            "free-for-all" if s.config.free_for_all else f"{s.config.total_rounds} rounds",
        )

    def _on_pause(self, cmd: Pause) -> None:
        s = self.session
        if s.status is SessionStatus.PAUSED:
            raise InvalidStateError("Session is already paused")
        if s.status is not SessionStatus.RUNNING:
            raise InvalidStateError(f"Cannot pause session in status '{s.status.value}'")

        s.status = SessionStatus.PAUSED
        if self._timer is not None:
            self._timer.pause(cmd.paused_by or self._config.human_identity)
            s.timer_state = self._timer.snapshot()
        self._publish_status()
        self._publish_timer()

    def _on_resume(self, cmd: Resume) -> None:
        s = self.session
        if s.status is SessionStatus.RUNNING:
            raise InvalidStateError("Session is already running")
        if s.status is not SessionStatus.PAUSED:
            raise InvalidStateError(f"Cannot resume session in status '{s.status.value}'")

        s.status = SessionStatus.RUNNING
        if self._timer is not None:
            self._timer.resume()
            s.timer_state = self._timer.snapshot()
        self._publish_status()
        self._publish_timer()
        self._scheduler.wake()

    def _on_advance(self, cmd: Advance) -> None:
        s = self.session
        if s.status not in (SessionStatus.RUNNING, SessionStatus.PAUSED):
            raise InvalidStateError(f"Cannot advance session in status '{s.status.value}'")
        if s.config.free_for_all:
            raise InvalidStateError("Free-for-all sessions have no rounds to advance")
        self._advance_round()

    def _on_end(self, cmd: End) -> None:
        if self.session.is_completed:
            raise InvalidStateError("Session is already completed")
        self._complete("ended by operator")

    def _on_send_message(self, cmd: SendMessage) -> CouncilMessage:
        s = self.session
        if s.is_completed:
            raise InvalidStateError("Session is completed")
        if not s.config.free_for_all and s.status not in (SessionStatus.RUNNING, SessionStatus.PAUSED):
            raise InvalidStateError(f"Cannot send messages in status '{s.status.value}'")
        content = (cmd.content or "").strip() if isinstance(cmd.content, str) else ""
        if not content:
            raise CouncilValidationError("Message content is required")

        mentioned = self._mentioned_role(content)
        human = self._config.human_identity
        message = self._append(human, content, s.current_round, reply_to=mentioned)

        roster = list(s.agents.values())
        if roster:
            if mentioned:
                prompt = f"{human} asked you directly: {content}"
            else:
                prompt = f"{human} says: {content}"
            self._scheduler.plan_replies(prompt, s.current_round, roster, mentioned)
            self._sync_agent_statuses()
        return message

    # ── Internal commands ─────────────────────────────────────────────

    def _on_tick(self, cmd: Tick) -> None:
        s = self.session
        if s.status is not SessionStatus.RUNNING or self._timer is None:
            return
        result = self._timer.tick(cmd.epoch)
        if result is None:
            return

        s.timer_state = self._timer.snapshot()
        self._publish_timer()
        if result.wrap_up:
            self._wrap_up()
        if result.expired:
            logger.info("Session %s: round %d expired", s.id, s.current_round)
            self._advance_round()

    def _on_next_turn(self, cmd: NextTurn) -> TurnGrant | None:
        s = self.session
        if s.status is not SessionStatus.RUNNING:
            self._scheduler.idle()
            return None
        turn = self._scheduler.pop()
        if turn is None:
            self._scheduler.idle()
            return None

        agent = s.agents[turn.role]
        self._sync_agent_statuses()
        return TurnGrant(
            turn=turn,
            agent=agent,
            transcript=tuple(s.messages),
            context_prompt=s.config.context_prompt,
        )

    def _on_finish_turn(self, cmd: FinishTurn) -> None:
        s = self.session
        turn = cmd.turn
        self._scheduler.finish(turn)
        if s.is_completed:
            logger.info(
                "Session %s: discarding late result from %s (session completed)", s.id, turn.role
            )
            return

        agent = s.agents[turn.role]
        if cmd.error is not None or not cmd.content:
            reason = cmd.error or "empty reply"
            self._append_system(
                f"{agent.emoji} {agent.display_name} could not respond: {reason}",
                turn.round_index,
            )
        else:
            self._append(agent.role, cmd.content, turn.round_index)
        self._sync_agent_statuses()

    def _on_record_export(self, cmd: RecordExport) -> None:
        s = self.session
        s.output = {**(s.output or {}), "ideaId": cmd.idea_id}
        logger.info("Session %s exported as idea %s", s.id, cmd.idea_id)

    # ── Transitions ───────────────────────────────────────────────────

    def _begin_round(self, index: int) -> None:
        s = self.session
        round_def = s.config.rounds[index]
        paused = s.status is SessionStatus.PAUSED

        s.current_round = index
        self._scheduler.clear()
        self._timer.start_round(
            index, round_def,
            paused=paused,
            paused_by=self._config.human_identity if paused else None,
        )
        s.timer_state = self._timer.snapshot()

        self._publish(RoundEvent(
            session_id=s.id,
            round_index=index,
            round=round_def.to_dict(index in s.wrap_up_sent),
            total_rounds=s.config.total_rounds,
        ))
        self._append_system(f"Round {index + 1}: {round_def.name}\n\n{round_def.prompt}", index)
        self._publish_timer()

        self._scheduler.plan_round(round_def.prompt, index, list(s.agents.values()))
        self._sync_agent_statuses()

    def _advance_round(self) -> None:
        s = self.session
        finished = s.current_round
        round_def = s.config.rounds[finished]
        self._append_system(f"Round {finished + 1} complete: {round_def.name}", finished)
        if finished + 1 >= s.config.total_rounds:
            self._complete("all rounds finished")
        else:
            self._begin_round(finished + 1)

    def _wrap_up(self) -> None:
        s = self.session
        index = s.current_round
        if index in s.wrap_up_sent:
            return
        s.wrap_up_sent.add(index)
        round_def = s.config.rounds[index]
        if not round_def.wrap_up_prompt:
            return
        self._append_system(f"⏰ {round_def.wrap_up_prompt}", index)
        self._scheduler.plan_wrap_up(round_def.wrap_up_prompt, index, list(s.agents.values()))
        self._sync_agent_statuses()

    def _complete(self, reason: str) -> None:
        s = self.session
        if self._timer is not None:
            self._timer.stop()
        self._scheduler.clear()
        self._scheduler.stop()

        for agent in s.agents.values():
            if agent.status is not AgentStatus.IDLE:
                agent.status = AgentStatus.IDLE
                self._publish(AgentEvent(session_id=s.id, role=agent.role, status=agent.status.value))

        s.current_round = max(s.current_round, s.terminal_round)

        try:
            s.output = summarize_session(s)
        except Exception as e:
            logger.error("Session %s: summary failed: %s", s.id, e)
            s.output = fallback_summary(s)

        s.status = SessionStatus.COMPLETED
        self._publish_status()
        logger.info("Session %s completed (%s), %d messages", s.id, reason, len(s.messages))

        self._spawn(self._release(), f"council-release-{s.id}")
        if self._exporter is not None:
            self._spawn(self._export(), f"council-export-{s.id}")

    def _spawn(self, coro: Any, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _release(self) -> None:
        """Free generator state once the last in-flight turn has landed."""
        await self._scheduler.wait_stopped()
        try:
            await self._generator.release(self.session.id)
        except Exception as e:
            logger.warning("Session %s: generator release failed: %s", self.session.id, e)

    async def _export(self) -> None:
        s = self.session
        try:
            idea_id = await self._exporter.export(s.id, s.output or {})
        except Exception as e:
            logger.warning("Session %s: idea bank export failed: %s", s.id, e)
            return
        if idea_id:
            self.post(RecordExport(idea_id))

    # ── Scheduler bridge ──────────────────────────────────────────────

    async def _request_turn(self) -> TurnGrant | None:
        return await self.submit(NextTurn())

    async def _finish_turn(self, turn: PlannedTurn, content: str | None, error: str | None) -> None:
        await self.submit(FinishTurn(turn, content, error))

    # ── Helpers ───────────────────────────────────────────────────────

    def _append(
        self,
        author: str,
        content: str,
        round_index: int,
        reply_to: str | None = None,
        system: bool = False,
    ) -> CouncilMessage:
        s = self.session
        timestamp = utcnow()
        if s.messages and timestamp < s.messages[-1].timestamp:
            timestamp = s.messages[-1].timestamp
        message = CouncilMessage(
            id=new_message_id(),
            timestamp=timestamp,
            author=author,
            content=content,
            round=round_index,
            reply_to=reply_to,
            is_system_message=system,
        )
        s.messages.append(message)
        self._publish(MessageEvent(session_id=s.id, message=message.to_dict()))
        return message

    def _append_system(self, content: str, round_index: int) -> CouncilMessage:
        return self._append(SYSTEM_AUTHOR, content, round_index, system=True)

    def _mentioned_role(self, content: str) -> str | None:
        for match in _MENTION_RE.finditer(content):
            role = match.group(1).lower()
            if role in self.session.agents:
                return role
        return None

    def _sync_agent_statuses(self) -> None:
        """typing = in flight, waiting = queued, idle = neither. Publishes changes only."""
        s = self.session
        active = self._scheduler.active
        for agent in s.agents.values():
            if active is not None and active.role == agent.role:
                status = AgentStatus.TYPING
            elif self._scheduler.is_pending(agent.role):
                status = AgentStatus.WAITING
            else:
                status = AgentStatus.IDLE
            if status is not agent.status:
                agent.status = status
                self._publish(AgentEvent(session_id=s.id, role=agent.role, status=status.value))

    def _publish_status(self) -> None:
        s = self.session
        self._publish(StatusEvent(session_id=s.id, status=s.status.value))

    def _publish_timer(self) -> None:
        s = self.session
        if s.timer_state is not None:
            self._publish(TimerEvent(session_id=s.id, timer_state=s.timer_state.to_dict()))

    def _publish(self, event: CouncilEvent) -> None:
        self._publish_fn(self.session.id, event)
