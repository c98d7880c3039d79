"""Syntrax: pushes incidents with new log activity to the issue tracker.

A single watermark marks how far log activity has been picked up. Each tick
reads every incident with log entries created at or after the watermark and
moves the watermark to the tick's start, read before the query, so an entry
written while the query runs is picked up by the next tick. Rooms whose sync
fails keep a retry marker at the watermark of the tick that failed; the
next ticks query from the oldest marker and resync those rooms until a call
succeeds, so a failed sync is not lost when no further log entry follows.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import TYPE_CHECKING, Any

from breaking_bot.engines.base import PeriodicEngine
from breaking_bot.utils.async_helpers import EngineError

if TYPE_CHECKING:
    from breaking_bot.core.registry import IncidentRegistry
    from breaking_bot.interfaces.tracker import IssueTracker
    from breaking_bot.models.log import LogEntry
    from breaking_bot.storage.database import Database


class Syntrax(PeriodicEngine):
    """Tracker sync engine."""

    name = "syntrax"

    def __init__(
        self,
        registry: IncidentRegistry,
        db: Database,
        tracker: IssueTracker | None,
        *,
        interval: float = 64,
        jitter: float = 60,
        **kwargs: Any,
    ) -> None:
        super().__init__(interval, **kwargs)
        self._registry = registry
        self._db = db
        self._tracker = tracker
        self._jitter = jitter
        self._watermark: datetime | None = None
        self._retry_since: dict[str, datetime] = {}

    @property
    def watermark(self) -> datetime | None:
        return self._watermark

    @property
    def pending_retries(self) -> dict[str, datetime]:
        return dict(self._retry_since)

    def _on_start(self) -> None:
        if self._tracker is None:
            raise EngineError("Syntrax cannot start without an issue tracker")
        self._watermark = self._clock()

    async def run_once(self) -> None:
        tracker = self._tracker
        if tracker is None:
            raise EngineError("Syntrax cannot run without an issue tracker")

        self._log.debug("tick_started")

        tick_start = self._clock()
        tick_since = self._watermark or tick_start
        since = min([tick_since, *self._retry_since.values()])

        syncs = await self._db.get_syncs_to_do(since)
        self._watermark = tick_start

        todo = {
            room: log
            for room, log in syncs.items()
            if room in self._retry_since or (log and log[-1].created_at >= tick_since)
        }

        self._log.debug("syncing", incidents=len(todo))

        rooms = list(todo)
        results = await asyncio.gather(
            *(self._sync(tracker, room, todo[room]) for room in rooms),
            return_exceptions=True,
        )

        for room, result in zip(rooms, results, strict=True):
            if isinstance(result, Exception):
                self._retry_since.setdefault(room, tick_since)
                self._log.error(
                    "sync_failed",
                    room=room,
                    error_type=type(result).__name__,
                    error=str(result),
                )

        self._log.debug("tick_completed")

    async def _sync(self, tracker: IssueTracker, room: str, log: list[LogEntry]) -> None:
        machine = self._registry.get(room)
        if machine is None:
            self._retry_since.pop(room, None)
            self._log.error("incident_not_in_registry", room=room)
            return

        if self._jitter > 0:
            await self._sleep(random.uniform(0, self._jitter))

        await tracker.sync(machine.data(), machine.state().value, log)
        self._retry_since.pop(room, None)
