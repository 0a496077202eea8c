"""
Shared fixtures for the council engine test suite.

Nothing here talks to a model: ``FakeGenerator`` stands in for the
utterance backend and records every turn it is asked to produce.
"""
import asyncio
import shutil
from pathlib import Path
from typing import Any, Callable

import pytest

import council_engine
from council_engine.config import EngineConfig
from council_engine.events import CouncilEvent, EventBus
from council_engine.exceptions import GenerationError
from council_engine.generator import TurnRequest, UtteranceGenerator
from council_engine.manager import CouncilManager
from council_engine.personas import PersonaStore

BUNDLED_PERSONAS = Path(council_engine.__file__).parent / "personas"
TEST_ROLES = ["visionary", "pragmatist", "critic"]


# ============================================================================
# Helpers
# ============================================================================

class FakeGenerator(UtteranceGenerator):
    """
    Deterministic generator.

    - ``fail_roles``: roles whose turns raise GenerationError
    - ``gate``: when set, every turn waits for the event before answering
    """

    def __init__(
        self,
        fail_roles: set[str] | None = None,
        replies: dict[str, str] | None = None,
        gate: asyncio.Event | None = None,
    ):
        self.calls: list[TurnRequest] = []
        self.fail_roles = set(fail_roles or ())
        self.replies = dict(replies or {})
        self.gate = gate
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def roles_called(self) -> list[str]:
        return [c.agent.role for c in self.calls]

    async def generate(self, request: TurnRequest) -> str:
        self.calls.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if request.agent.role in self.fail_roles:
                raise GenerationError("upstream timeout")
            return self.replies.get(request.agent.role, f"{request.agent.role} speaking in round {request.round_index}")
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


class RecordingSubscriber:
    """Collects every event delivered for the sessions it joined."""

    def __init__(self):
        self.events: list[CouncilEvent] = []

    def deliver(self, event: CouncilEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]

    def of_type(self, event_type: str) -> list[Any]:
        return [e for e in self.events if e.type == event_type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


async def settle(delay: float = 0.05) -> None:
    """Give background tasks a chance to run."""
    await asyncio.sleep(delay)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def persona_dir(tmp_path) -> Path:
    """A writable copy of the bundled personas."""
    target = tmp_path / "personas"
    shutil.copytree(BUNDLED_PERSONAS, target)
    return target


@pytest.fixture
def config(persona_dir) -> EngineConfig:
    """Three-agent config; ticks are driven by the tests, never by the clock."""
    return EngineConfig(
        personas_path=str(persona_dir),
        council_roles=list(TEST_ROLES),
        tick_interval_seconds=3600,
        ws_ping_interval=3600,
    )


@pytest.fixture
def store(persona_dir) -> PersonaStore:
    return PersonaStore(persona_dir)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder() -> RecordingSubscriber:
    return RecordingSubscriber()


@pytest.fixture
async def manager(config, store, generator, bus):
    mgr = CouncilManager(config, store, generator, bus)
    yield mgr
    await mgr.shutdown()
