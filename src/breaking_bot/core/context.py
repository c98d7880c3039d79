"""Shared runtime context passed to command handlers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from breaking_bot.core.date import utcnow
from breaking_bot.models.log import LogType
from breaking_bot.utils.async_helpers import gather_settled

if TYPE_CHECKING:
    from breaking_bot.config.schema import BotConfig
    from breaking_bot.core.fsm import IncidentMachine
    from breaking_bot.core.priority import PriorityTable
    from breaking_bot.core.registry import IncidentRegistry
    from breaking_bot.core.user_identity import UserIdentity
    from breaking_bot.interfaces.chat import ChatProvider
    from breaking_bot.interfaces.reporter import ReportPlatform
    from breaking_bot.interfaces.tracker import IssueTracker
    from breaking_bot.models.incident import Incident
    from breaking_bot.models.log import LogEntry
    from breaking_bot.models.message import ChatMessage
    from breaking_bot.storage.database import Database

log = structlog.get_logger()

DEFAULT_OK_REACTION = "ok_hand"


@dataclass
class BotContext:
    """Everything a handler may touch.

    Collaborators are selected once at startup and held for the life of the
    process. ``tracker`` and ``reporter`` are None when not configured.
    """

    config: BotConfig
    db: Database
    registry: IncidentRegistry
    priorities: PriorityTable
    chat: ChatProvider
    users: UserIdentity
    tracker: IssueTracker | None = None
    reporter: ReportPlatform | None = None
    clock: Callable[[], datetime] = field(default=utcnow)

    @property
    def main_room(self) -> str | None:
        slack = self.config.chat.slack
        return slack.main_room if slack else None

    @property
    def ok_reaction(self) -> str:
        slack = self.config.chat.slack
        return slack.ok_reaction if slack else DEFAULT_OK_REACTION

    async def settle(self, *aws: Awaitable[Any]) -> list[Any]:
        """Run fire-and-forget side effects; failures are logged only."""
        return await gather_settled(aws, event="command_side_effect_failed")

    async def acknowledge(self, message: ChatMessage, reply: str | None = None) -> None:
        """React to a handled command and optionally reply in its thread."""
        effects = [self.chat.react_to_message(message.room, self.ok_reaction, message.message_id)]
        if reply:
            effects.append(self.chat.reply_to_message(message.room, reply, message.message_id))
        await self.settle(*effects)

    async def reply(self, message: ChatMessage, text: str) -> None:
        await self.settle(self.chat.reply_to_message(message.room, text, message.message_id))

    async def reject(self, message: ChatMessage, text: str) -> None:
        """Report a refused or failed command visibly in the room."""
        await self.settle(self.chat.send_error(message.room, text, message.message_id))

    async def permalink(self, message: ChatMessage) -> str | None:
        try:
            return await self.chat.get_permalink(message.room, message.message_id)
        except Exception as e:
            log.warning("permalink_failed", room=message.room, error=str(e))
            return None

    async def log_event(
        self,
        incident: Incident,
        text: str,
        message: ChatMessage,
        log_type: LogType = LogType.EVENT,
        context_url: str | None = None,
    ) -> LogEntry:
        """Append a log entry linked back to the message that caused it."""
        url = context_url or await self.permalink(message)
        return await self.db.add_log_entry(
            incident.id, log_type, text, message.user_id, context_url=url
        )


@dataclass(frozen=True)
class Invocation:
    """One parsed command, heard in one room."""

    message: ChatMessage
    command: str
    args: str
    machine: IncidentMachine | None = None

    @property
    def room(self) -> str:
        return self.message.room

    @property
    def user_id(self) -> str:
        return self.message.user_id

    @property
    def incident_machine(self) -> IncidentMachine:
        """The room's incident machine.

        Raises:
            LookupError: If the room has no live incident
        """
        if self.machine is None:
            raise LookupError(f"No incident in room {self.room}")
        return self.machine

    @property
    def incident(self) -> Incident:
        return self.incident_machine.data()
