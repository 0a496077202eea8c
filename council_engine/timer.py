"""
Round Timer — per-session resumable countdown.

The countdown state lives here; the decrement is applied by the session
machine's worker through ``tick(epoch)`` so that ticks and commands never
interleave mid-tick. A driver task only sleeps and reports "a second passed".
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from council_engine.models import Round, TimerState

logger = logging.getLogger("council.engine.timer")


@dataclass(frozen=True)
class TickResult:
    """What one decrement produced."""
    remaining: int
    wrap_up: bool = False
    expired: bool = False


class RoundTimer:
    """
    Countdown for the active round of one session.

    Every (re)start of the driver bumps ``epoch``; a tick carrying an older
    epoch was scheduled before a pause or round change and is ignored.

    Usage:
        timer = RoundTimer(on_tick=lambda epoch: machine.post(Tick(epoch)))
        timer.start_round(0, rounds[0])
        result = timer.tick(epoch)   # inside the machine worker
    """

    def __init__(
        self,
        on_tick: Callable[[int], None],
        tick_interval: float = 1.0,
        wrap_up_threshold: int = 30,
        session_id: str = "",
    ):
        self._on_tick = on_tick
        self._interval = tick_interval
        self._threshold = wrap_up_threshold
        self._session_id = session_id

        self.round_index = 0
        self.round_name = ""
        self.remaining = 0
        self.paused = False
        self.paused_by: str | None = None
        self.stopped = True
        self.epoch = 0
        self._wrap_up_fired = False
        self._driver: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._driver is not None and not self._driver.done()

    def start_round(
        self,
        round_index: int,
        round_def: Round,
        paused: bool = False,
        paused_by: str | None = None,
    ) -> None:
        """Reset the countdown to the round's full duration."""
        self._cancel_driver()
        self.round_index = round_index
        self.round_name = round_def.name
        self.remaining = round_def.duration_seconds
        self._wrap_up_fired = False
        self.stopped = False
        self.paused = paused
        self.paused_by = paused_by if paused else None
        self.epoch += 1
        if not paused:
            self._start_driver()
        logger.debug(
            "Timer %s: round %d '%s' %ds%s",
            self._session_id, round_index, round_def.name,
            round_def.duration_seconds, " (paused)" if paused else "",
        )

    def tick(self, epoch: int) -> TickResult | None:
        """Apply one decrement. Returns None for stale or suppressed ticks."""
        if epoch != self.epoch or self.paused or self.stopped or self.remaining <= 0:
            return None

        previous = self.remaining
        self.remaining -= 1

        wrap_up = False
        if not self._wrap_up_fired and previous > self._threshold >= self.remaining:
            self._wrap_up_fired = True
            wrap_up = True

        expired = self.remaining <= 0
        if expired:
            self._cancel_driver()
        return TickResult(remaining=self.remaining, wrap_up=wrap_up, expired=expired)

    def pause(self, paused_by: str | None = None) -> None:
        if self.paused or self.stopped:
            return
        self._cancel_driver()
        self.epoch += 1
        self.paused = True
        self.paused_by = paused_by

    def resume(self) -> None:
        """Continue from the frozen ``remaining``; next decrement is one full interval away."""
        if not self.paused or self.stopped:
            return
        self.paused = False
        self.paused_by = None
        self.epoch += 1
        if self.remaining > 0:
            self._start_driver()

    def stop(self) -> None:
        self._cancel_driver()
        self.epoch += 1
        self.stopped = True

    def snapshot(self) -> TimerState:
        return TimerState(
            remaining=self.remaining,
            paused=self.paused,
            paused_by=self.paused_by,
            current_round=self.round_index,
            round_name=self.round_name,
        )

    async def aclose(self) -> None:
        driver = self._driver
        self.stop()
        if driver is not None:
            try:
                await driver
            except asyncio.CancelledError:
                pass

    # ── internals ─────────────────────────────────────────────────────

    def _start_driver(self) -> None:
        epoch = self.epoch
        self._driver = asyncio.create_task(
            self._run(epoch), name=f"council-timer-{self._session_id}-{epoch}"
        )

    def _cancel_driver(self) -> None:
        if self._driver is not None and not self._driver.done():
            self._driver.cancel()
        self._driver = None

    async def _run(self, epoch: int) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self._on_tick(epoch)
