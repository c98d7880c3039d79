"""Archivist: retires finished incidents.

Completed incidents are archived once they have sat completed for longer
than ``completed_retention``; incidents waiting for review are archived
once they have been idle for longer than ``review_retention``. Archiving
writes the archive time, drops the incident from the registry and leaves
its room. Canceled incidents are already terminal in storage; they are
only evicted and their room left.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any

from breaking_bot.core.date import seconds_since
from breaking_bot.core.fsm import Action, IncidentMachine, IncidentState
from breaking_bot.engines.base import PeriodicEngine
from breaking_bot.utils.async_helpers import gather_settled

if TYPE_CHECKING:
    from breaking_bot.core.registry import IncidentRegistry
    from breaking_bot.interfaces.chat import ChatProvider
    from breaking_bot.storage.database import Database


def is_archive_eligible(
    machine: IncidentMachine,
    now: datetime,
    completed_retention: float,
    review_retention: float,
    last_activity: datetime | None = None,
) -> bool:
    """Decide whether an incident should be archived now.

    Args:
        machine: The incident's state machine
        now: Evaluation time
        completed_retention: Seconds a completed incident is kept
        review_retention: Seconds an idle incident awaiting review is kept
        last_activity: Time of the incident's latest log entry, if any

    Returns:
        True if the incident is due for archival
    """
    incident = machine.data()
    state = machine.primary_state

    if state is IncidentState.COMPLETED:
        return (
            incident.completed_at is not None
            and seconds_since(incident.completed_at, now) > completed_retention
        )

    if state is IncidentState.READY_FOR_REVIEW:
        if incident.ready_for_review_at is None:
            return False
        idle_since = max(
            t for t in (incident.ready_for_review_at, incident.updated_at, last_activity) if t
        )
        return seconds_since(idle_since, now) > review_retention

    return False


class Archivist(PeriodicEngine):
    """Archival engine."""

    name = "archivist"

    def __init__(
        self,
        registry: IncidentRegistry,
        db: Database,
        chat: ChatProvider,
        *,
        interval: float = 42 * 60,
        completed_retention: float = 0,
        review_retention: float = 30 * 24 * 60 * 60,
        **kwargs: Any,
    ) -> None:
        super().__init__(interval, **kwargs)
        self._registry = registry
        self._db = db
        self._chat = chat
        self._completed_retention = completed_retention
        self._review_retention = review_retention
        self._leaving: set[asyncio.Task[None]] = set()

    async def run_once(self) -> None:
        self._log.debug("tick_started")

        now = self._clock()
        activity = await self._db.get_last_log_activity()

        archives = []
        for room, machine in self._registry.snapshot():
            incident = machine.data()
            state = machine.primary_state

            if state is IncidentState.ARCHIVED:
                self._evict(room, machine)
            elif state is IncidentState.CANCELED:
                if (
                    incident.canceled_at is not None
                    and seconds_since(incident.canceled_at, now) > self._completed_retention
                ):
                    self._evict(room, machine)
                    self._leave(room)
            elif is_archive_eligible(
                machine,
                now,
                self._completed_retention,
                self._review_retention,
                activity.get(room),
            ):
                archives.append(self.archive(room, machine, now))

        results = await gather_settled(archives, event="archive_failed", engine=self.name)
        archived = sum(1 for result in results if result is True)

        self._log.debug("tick_completed", archived=archived)

    async def archive(self, room: str, machine: IncidentMachine, at: datetime) -> bool:
        """Archive one incident.

        Returns:
            True if this call archived it; False if it was already archived
        """
        machine.check(Action.ARCHIVE)
        incident = machine.data()

        archived_at = await self._db.archive_incident(incident.id, at)
        if archived_at is None:
            self._log.info("incident_already_archived", room=room, incident_id=incident.id)
            self._evict(room, machine)
            return False

        incident.archived_at = archived_at
        machine.transition(Action.ARCHIVE)
        self._evict(room, machine)
        self._leave(room)

        self._log.info("incident_archived", room=room, incident_id=incident.id)
        return True

    async def wait_idle(self) -> None:
        await super().wait_idle()
        if self._leaving:
            await asyncio.gather(*list(self._leaving), return_exceptions=True)

    def _evict(self, room: str, machine: IncidentMachine) -> None:
        if self._registry.get(room) is machine:
            del self._registry[room]

    def _leave(self, room: str) -> None:
        task = asyncio.create_task(self._leave_room(room), name=f"leave_{room}")
        self._leaving.add(task)
        task.add_done_callback(self._leaving.discard)

    async def _leave_room(self, room: str) -> None:
        try:
            await self._chat.leave_room(room)
        except Exception as e:
            self._log.error(
                "leave_room_failed", room=room, error_type=type(e).__name__, error=str(e)
            )
