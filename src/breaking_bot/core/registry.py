"""In-memory registry of live incidents, keyed by chat room."""

from __future__ import annotations

from collections.abc import Iterator, MutableMapping
from typing import TYPE_CHECKING

import structlog

from breaking_bot.core.fsm import IncidentMachine

if TYPE_CHECKING:
    from breaking_bot.core.priority import PriorityTable
    from breaking_bot.models.incident import Incident
    from breaking_bot.storage.database import Database

log = structlog.get_logger()


class IncidentRegistry(MutableMapping[str, IncidentMachine]):
    """Mapping of chat room id to the state machine of its live incident.

    Shared by command handlers and engines. All access happens on the event
    loop thread; a mutation with no await inside it is atomic with respect
    to every other task.
    """

    def __init__(self, priorities: PriorityTable) -> None:
        self._priorities = priorities
        self._machines: dict[str, IncidentMachine] = {}

    def __getitem__(self, room: str) -> IncidentMachine:
        return self._machines[room]

    def __setitem__(self, room: str, machine: IncidentMachine) -> None:
        self._machines[room] = machine

    def __delitem__(self, room: str) -> None:
        del self._machines[room]

    def __iter__(self) -> Iterator[str]:
        return iter(self._machines)

    def __len__(self) -> int:
        return len(self._machines)

    def register(self, incident: Incident) -> IncidentMachine:
        """Wrap an incident in a state machine and add it under its room."""
        machine = IncidentMachine(incident, self._priorities)
        self._machines[incident.chat_room_uid] = machine
        return machine

    def snapshot(self) -> list[tuple[str, IncidentMachine]]:
        """Return a stable list of entries safe to iterate across awaits."""
        return list(self._machines.items())

    async def load(self, db: Database) -> int:
        """Replace the registry contents with all in-progress incidents.

        Returns:
            Number of incidents loaded
        """
        incidents = await db.find_incidents_in_progress()
        self._machines.clear()

        for incident in incidents:
            self.register(incident)

        log.info("incidents_loaded", count=len(self._machines))
        return len(self._machines)
