"""
Council Manager — registry of live session machines.

Sessions live in memory for the lifetime of the process; completed sessions
stay readable until shutdown.
"""
import logging
from typing import Any

from council_engine.config import EngineConfig
from council_engine.events import EventBus
from council_engine.exceptions import SessionNotFoundError
from council_engine.export import IdeaBankExporter
from council_engine.generator import UtteranceGenerator
from council_engine.models import CouncilSession, new_session_id
from council_engine.personas import PersonaStore
from council_engine.session import CouncilSessionMachine
from council_engine.templates import build_session_config

logger = logging.getLogger("council.engine.manager")


class CouncilManager:
    """
    Creates, finds and shuts down council sessions.

    Usage:
        manager = CouncilManager(config, personas, generator, bus)
        machine = await manager.create(template="quick")
        await manager.dispatch(machine.session_id, Start())
    """

    def __init__(
        self,
        config: EngineConfig,
        personas: PersonaStore,
        generator: UtteranceGenerator,
        bus: EventBus,
        exporter: IdeaBankExporter | None = None,
    ):
        self.config = config
        self.personas = personas
        self.generator = generator
        self.bus = bus
        self.exporter = exporter
        self._machines: dict[str, CouncilSessionMachine] = {}

    def __len__(self) -> int:
        return len(self._machines)

    async def create(
        self,
        template: str | None = None,
        custom_rounds: list[Any] | None = None,
        context_prompt: str | None = None,
    ) -> CouncilSessionMachine:
        """
        Allocate a new session in ``configuring``.

        Raises:
            CouncilValidationError: unknown template or malformed rounds.
        """
        session_config = build_session_config(template, custom_rounds, context_prompt)
        session = CouncilSession(id=new_session_id(), config=session_config)
        machine = CouncilSessionMachine(
            session,
            config=self.config,
            personas=self.personas,
            generator=self.generator,
            publish=self.bus.publish,
            exporter=self.exporter,
        )
        machine.start_worker()
        self._machines[session.id] = machine
        logger.info(
            "Created session %s (%s)",
            session.id,
            "free-for-all" if session_config.free_for_all else f"{session_config.total_rounds} rounds",
        )
        return machine

    def get(self, session_id: str) -> CouncilSessionMachine:
        machine = self._machines.get(session_id)
        if machine is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return machine

    def exists(self, session_id: str) -> bool:
        return session_id in self._machines

    async def dispatch(self, session_id: str, command: Any) -> Any:
        return await self.get(session_id).submit(command)

    def snapshot(self, session_id: str) -> dict[str, Any]:
        return self.get(session_id).snapshot()

    def list_sessions(self) -> list[dict[str, Any]]:
        """Summaries, newest first."""
        sessions = sorted(
            (m.session for m in self._machines.values()),
            key=lambda s: s.created_at,
            reverse=True,
        )
        return [s.summary() for s in sessions]

    async def shutdown(self) -> None:
        machines = list(self._machines.values())
        for machine in machines:
            await machine.aclose()
        logger.info("Council manager shut down (%d sessions)", len(machines))
