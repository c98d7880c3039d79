"""Data models and transfer objects."""

from .command import CommandOutcome, CommandResult
from .incident import Affected, Blocker, Component, Incident
from .log import COMM_LOG_TYPES, LogEntry, LogType
from .message import ChatMessage
from .nag import NagCondition
from .user import ChatUser, UserEntry

__all__ = [
    # Incident models
    "Incident",
    "Blocker",
    "Affected",
    "Component",
    # Log models
    "LogType",
    "LogEntry",
    "COMM_LOG_TYPES",
    # User models
    "UserEntry",
    "ChatUser",
    # Message models
    "ChatMessage",
    # Escalation
    "NagCondition",
    # Command models
    "CommandOutcome",
    "CommandResult",
]
