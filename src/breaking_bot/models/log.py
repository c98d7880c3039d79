"""Data models for the append-only incident log."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class LogType(StrEnum):
    """Category tag of a log entry."""

    ACTION_ITEM = "action_item"
    AFFECTED = "affected"
    BLOCKER = "blocker"
    COMM_UPDATE = "comm_update"
    COMPONENT = "component"
    CONTRIBUTING_FACTOR = "contributing_factor"
    EVENT = "event"
    NOTE = "note"
    PR = "pr"
    PRIORITY = "priority"
    SUMMARY = "summary"
    UNBLOCK = "unblock"


# Entry types that count as a communication to stakeholders
COMM_LOG_TYPES = frozenset({LogType.COMM_UPDATE, LogType.SUMMARY})

_TEXT_PREFIXES = {
    LogType.ACTION_ITEM: "Action item: ",
    LogType.COMM_UPDATE: "Comm update: ",
    LogType.NOTE: "Note: ",
    LogType.SUMMARY: "Summary: ",
    LogType.BLOCKER: "Blocked on: ",
    LogType.UNBLOCK: "Unblocked: ",
}


@dataclass(frozen=True)
class LogEntry:
    """A single immutable log entry."""

    id: int
    incident_id: int
    type: LogType
    text: str
    created_by: str
    created_at: datetime
    context_url: str | None = None

    @property
    def display_text(self) -> str:
        """Return the text prefixed with a human label for its type."""
        return _TEXT_PREFIXES.get(self.type, "") + self.text
