"""
Turn Scheduler — decides who speaks next and drives generation one agent at a time.

The planned-turn queue is only mutated from session machine handlers
(``plan_*``, ``pop``, ``finish``, ``clear``). The driver task never touches
it directly: it asks the machine for the next turn, generates, and hands the
result back, so every transcript append goes through the machine mailbox.
"""
import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Sequence

from council_engine.exceptions import EngineError
from council_engine.generator import TurnRequest, UtteranceGenerator
from council_engine.models import AgentInstance, CouncilMessage

logger = logging.getLogger("council.engine.scheduler")

TURN_ROUND = "round"
TURN_WRAP_UP = "wrap_up"
TURN_REPLY = "reply"

_ADDRESSEE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9 _-]{0,40}?)\s*:")


@dataclass(frozen=True)
class PlannedTurn:
    role: str
    round_index: int
    prompt: str
    kind: str = TURN_ROUND


@dataclass(frozen=True)
class TurnGrant:
    """A popped turn plus the transcript the agent must read."""
    turn: PlannedTurn
    agent: AgentInstance
    transcript: tuple[CouncilMessage, ...]
    context_prompt: str | None = None


def _normalize(name: str) -> str:
    return " ".join(name.replace("-", " ").replace("_", " ").lower().split())


def select_speakers(prompt: str, roster: Sequence[AgentInstance]) -> list[AgentInstance]:
    """
    Speaking order for a round prompt.

    Every agent answers a round prompt. ``"Visionary: Propose..."`` names
    the agent (by role or persona name) who opens; the rest follow in roster
    order. ``"All agents: ..."`` or no addressee keeps roster order.
    """
    speakers = list(roster)
    match = _ADDRESSEE_RE.match(prompt)
    if match:
        addressee = _normalize(match.group(1))
        for agent in roster:
            if addressee in (_normalize(agent.role), _normalize(agent.display_name)):
                speakers.remove(agent)
                return [agent, *speakers]
    return speakers


class TurnScheduler:
    """
    Sequential per-session turn driver.

    Usage (wired by CouncilSessionMachine):
        scheduler = TurnScheduler(generator, request_turn, finish_turn, session_id)
        scheduler.plan_round(prompt, 0, roster)   # inside a machine handler
        scheduler.start()
    """

    def __init__(
        self,
        generator: UtteranceGenerator,
        request_turn: Callable[[], Awaitable[TurnGrant | None]],
        finish_turn: Callable[[PlannedTurn, str | None, str | None], Awaitable[None]],
        session_id: str = "",
    ):
        self._generator = generator
        self._request_turn = request_turn
        self._finish_turn = finish_turn
        self._session_id = session_id
        self._queue: deque[PlannedTurn] = deque()
        self._active: PlannedTurn | None = None
        self._wakeup = asyncio.Event()
        self._driver: asyncio.Task | None = None
        self._stopped = False

    # ── state (machine handlers only) ─────────────────────────────────

    @property
    def pending(self) -> tuple[PlannedTurn, ...]:
        return tuple(self._queue)

    @property
    def active(self) -> PlannedTurn | None:
        return self._active

    def is_pending(self, role: str) -> bool:
        return any(t.role == role for t in self._queue)

    def plan_round(self, prompt: str, round_index: int, roster: Sequence[AgentInstance]) -> list[PlannedTurn]:
        return self._enqueue(
            PlannedTurn(a.role, round_index, prompt, TURN_ROUND)
            for a in select_speakers(prompt, roster)
        )

    def plan_wrap_up(self, prompt: str, round_index: int, roster: Sequence[AgentInstance]) -> list[PlannedTurn]:
        """Every agent without a queued turn gets one wrap-up turn."""
        return self._enqueue(
            PlannedTurn(a.role, round_index, prompt, TURN_WRAP_UP)
            for a in roster
            if not self.is_pending(a.role)
        )

    def plan_replies(
        self,
        prompt: str,
        round_index: int,
        roster: Sequence[AgentInstance],
        mentioned: str | None = None,
    ) -> list[PlannedTurn]:
        agents = [a for a in roster if a.role == mentioned] if mentioned else list(roster)
        return self._enqueue(
            PlannedTurn(a.role, round_index, prompt, TURN_REPLY) for a in agents
        )

    def pop(self) -> PlannedTurn | None:
        if not self._queue:
            return None
        self._active = self._queue.popleft()
        return self._active

    def finish(self, turn: PlannedTurn) -> None:
        if self._active is turn:
            self._active = None

    def clear(self) -> int:
        """Drop queued turns (new round, completion). An in-flight turn is unaffected."""
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.debug("Scheduler %s: dropped %d queued turns", self._session_id, dropped)
        return dropped

    def idle(self) -> None:
        """Nothing to hand out right now; the driver will wait for ``wake()``."""
        self._wakeup.clear()

    def wake(self) -> None:
        self._wakeup.set()

    def _enqueue(self, turns: Iterable[PlannedTurn]) -> list[PlannedTurn]:
        planned = list(turns)
        self._queue.extend(planned)
        if planned:
            self._wakeup.set()
        return planned

    # ── driver ────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._driver is not None and not self._driver.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._driver = asyncio.create_task(
            self._drive(), name=f"council-scheduler-{self._session_id}"
        )

    def stop(self) -> None:
        """Let the driver exit after any in-flight turn lands."""
        self._stopped = True
        self._wakeup.set()

    async def wait_stopped(self) -> None:
        """Return once the driver task has exited."""
        if self._driver is not None:
            await asyncio.wait({self._driver})

    async def aclose(self) -> None:
        self.stop()
        if self._driver is not None and not self._driver.done():
            self._driver.cancel()
            try:
                await self._driver
            except asyncio.CancelledError:
                pass
        self._driver = None

    async def _drive(self) -> None:
        while not self._stopped:
            try:
                grant = await self._request_turn()
            except EngineError as e:
                logger.info("Scheduler %s stopping: %s", self._session_id, e.message)
                return

            if grant is None:
                if self._stopped:
                    return
                await self._wakeup.wait()
                continue

            await self._run_turn(grant)

    async def _run_turn(self, grant: TurnGrant) -> None:
        turn = grant.turn
        request = TurnRequest(
            agent=grant.agent,
            prompt=turn.prompt,
            transcript=grant.transcript,
            context_prompt=grant.context_prompt,
            round_index=turn.round_index,
            session_id=self._session_id,
        )
        content: str | None = None
        error: str | None = None
        try:
            content = await self._generator.generate(request)
        except EngineError as e:
            error = e.message
        except Exception as e:
            # One agent failing must not stall the round.
            logger.warning(
                "Scheduler %s: %s failed unexpectedly: %s", self._session_id, turn.role, e
            )
            error = str(e) or type(e).__name__

        if error is not None:
            logger.warning("Scheduler %s: %s could not respond: %s", self._session_id, turn.role, error)

        try:
            await self._finish_turn(turn, content, error)
        except EngineError as e:
            logger.info("Scheduler %s: result from %s dropped: %s", self._session_id, turn.role, e.message)
