"""Timer-driven periodic engine.

Each engine owns one timer task. Every time the timer fires it spawns the
tick as a separate task and goes straight back to sleep, so a slow tick
never delays the next firing and ticks may overlap. Stopping an engine
cancels the timer only; ticks already in flight run to completion.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

import structlog

from breaking_bot.core.date import utcnow

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], datetime]


class PeriodicEngine(ABC):
    """Base class for the periodic engines.

    Subclasses implement :meth:`run_once`. ``sleep``, ``clock`` and
    ``logger`` are injectable so the schedule can be driven without waiting
    on the wall clock.
    """

    name = "engine"

    def __init__(
        self,
        interval: float,
        *,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._interval = interval
        self._sleep: Sleep = sleep or asyncio.sleep
        self._clock: Clock = clock or utcnow
        self._log = logger or structlog.get_logger().bind(engine=self.name)
        self._timer: asyncio.Task[None] | None = None
        self._ticks: set[asyncio.Task[None]] = set()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> int:
        """Number of ticks currently running."""
        return len(self._ticks)

    def start(self) -> None:
        """Start the timer. Must be called from a running event loop."""
        if self.is_running:
            self._log.warning("engine_already_running")
            return

        self._on_start()
        self._log.debug("starting", interval=self._interval)
        self._timer = asyncio.create_task(self._run_timer(), name=f"{self.name}_timer")

    async def stop(self) -> None:
        """Stop scheduling ticks. In-flight ticks are left to finish."""
        timer, self._timer = self._timer, None
        if timer is None:
            return

        timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await timer

        self._log.info("stopped", in_flight=len(self._ticks))

    async def wait_idle(self) -> None:
        """Wait until every in-flight tick has finished."""
        while self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    @abstractmethod
    async def run_once(self) -> None:
        """Run a single tick."""

    def _on_start(self) -> None:
        """Hook run by :meth:`start` before the timer is created."""

    async def _run_timer(self) -> None:
        while True:
            await self._sleep(self._interval)
            task = asyncio.create_task(self._run_tick(), name=f"{self.name}_tick")
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def _run_tick(self) -> None:
        try:
            await self.run_once()
        except Exception:
            self._log.exception("tick_failed")
