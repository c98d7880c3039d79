"""Annoyotron: escalation reminders for incidents missing attention.

Thresholds come from the incident's priority. A condition fires once its
elapsed time reaches the threshold and then stays quiet for a full
threshold before it may fire again. Blocked incidents are never nagged;
elapsed times are always measured from the underlying events, so a blocked
period does not reset them.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from breaking_bot.core.date import seconds_since
from breaking_bot.core.fsm import is_incident_active, is_incident_updatable
from breaking_bot.engines.base import PeriodicEngine
from breaking_bot.models.nag import NagCondition
from breaking_bot.utils.async_helpers import gather_settled

if TYPE_CHECKING:
    from breaking_bot.config.schema import NagIntervals
    from breaking_bot.core.fsm import IncidentMachine
    from breaking_bot.core.priority import PriorityTable
    from breaking_bot.core.registry import IncidentRegistry
    from breaking_bot.interfaces.chat import ChatProvider
    from breaking_bot.models.incident import Incident
    from breaking_bot.storage.database import Database


def due_nags(
    incident: Incident,
    intervals: NagIntervals | None,
    now: datetime,
    last_comm_update: datetime | None = None,
    last_activity: datetime | None = None,
    last_nags: dict[NagCondition, datetime] | None = None,
) -> list[NagCondition]:
    """Work out which reminders an incident is due.

    Args:
        incident: The incident to evaluate
        intervals: Thresholds in seconds for the incident's priority
        now: Evaluation time
        last_comm_update: Time of the latest comm update or summary, if any
        last_activity: Time of the latest log entry of any kind, if any
        last_nags: When each condition last fired for this incident

    Returns:
        Conditions due now, in a stable order
    """
    if intervals is None:
        return []

    last_nags = last_nags or {}
    candidates: list[tuple[NagCondition, int | None, datetime]] = []

    if not incident.point:
        candidates.append((NagCondition.NO_POINT, intervals.no_point, incident.created_at))

    if not incident.comms:
        candidates.append(
            (NagCondition.NO_COMMS, intervals.no_comms, last_activity or incident.created_at)
        )

    if last_comm_update is None:
        candidates.append(
            (NagCondition.NEED_INITIAL_COMM, intervals.need_initial_comm, incident.created_at)
        )
    else:
        candidates.append(
            (NagCondition.NEED_COMM_UPDATE, intervals.need_comm_update, last_comm_update)
        )

    due = []
    for condition, threshold, since in candidates:
        if threshold is None:
            continue
        if seconds_since(since, now) < threshold:
            continue

        last_nag = last_nags.get(condition)
        if last_nag is not None and seconds_since(last_nag, now) < threshold:
            continue

        due.append(condition)

    return due


class Annoyotron(PeriodicEngine):
    """Escalation reminder engine."""

    name = "annoyotron"

    def __init__(
        self,
        registry: IncidentRegistry,
        db: Database,
        chat: ChatProvider,
        priorities: PriorityTable,
        *,
        main_room: str | None = None,
        interval: float = 64,
        **kwargs: Any,
    ) -> None:
        super().__init__(interval, **kwargs)
        self._registry = registry
        self._db = db
        self._chat = chat
        self._priorities = priorities
        self._main_room = main_room
        self._last_nags: dict[str, dict[NagCondition, datetime]] = {}

    def last_nags(self, room: str) -> dict[NagCondition, datetime]:
        return dict(self._last_nags.get(room, {}))

    async def run_once(self) -> None:
        self._log.debug("tick_started")

        for room in list(self._last_nags):
            if room not in self._registry:
                del self._last_nags[room]

        candidates = [
            (room, machine)
            for room, machine in self._registry.snapshot()
            if self._is_naggable(machine)
        ]
        if not candidates:
            self._log.debug("tick_completed", nags=0)
            return

        comm_updates = await self._db.get_most_recent_comm_updates()
        activity = await self._db.get_last_log_activity()
        now = self._clock()

        sent: list[tuple[str, NagCondition]] = []
        sends = []
        for room, machine in candidates:
            # The registry may have changed while storage was queried
            if self._registry.get(room) is not machine or not self._is_naggable(machine):
                continue

            incident = machine.data()
            room_nags = self._last_nags.setdefault(room, {})
            for condition in due_nags(
                incident,
                self._priorities.nag_intervals(incident.priority),
                now,
                last_comm_update=comm_updates.get(room),
                last_activity=activity.get(room),
                last_nags=room_nags,
            ):
                room_nags[condition] = now
                sent.append((room, condition))
                sends.append(self._chat.send_nag(incident, condition, self._main_room))

        results = await gather_settled(sends, event="nag_failed", engine=self.name)

        for (room, condition), result in zip(sent, results, strict=True):
            if isinstance(result, Exception):
                self._last_nags.get(room, {}).pop(condition, None)
            else:
                self._log.info("nag_sent", room=room, condition=condition.value)

        self._log.debug("tick_completed", nags=len(sends))

    @staticmethod
    def _is_naggable(machine: IncidentMachine) -> bool:
        incident = machine.data()
        return (
            is_incident_active(incident)
            and is_incident_updatable(incident)
            and not machine.is_blocked()
        )
