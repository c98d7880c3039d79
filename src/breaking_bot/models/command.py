"""Outcome models for chat command handling."""

from dataclasses import dataclass
from enum import Enum


class CommandOutcome(Enum):
    """Outcome of handling one chat command."""

    OK = "ok"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    ERROR = "error"
    NO_COMMAND = "no_command"


@dataclass(frozen=True)
class CommandResult:
    """What a handler did, for replies and tests."""

    outcome: CommandOutcome
    added: tuple[str, ...] = ()
    duplicates: tuple[str, ...] = ()
    rejected: tuple[str, ...] = ()
    detail: str | None = None

    @classmethod
    def ok(cls, detail: str | None = None) -> "CommandResult":
        return cls(CommandOutcome.OK, detail=detail)

    @classmethod
    def error(cls, detail: str) -> "CommandResult":
        return cls(CommandOutcome.ERROR, detail=detail)

    @classmethod
    def not_found(cls, detail: str) -> "CommandResult":
        return cls(CommandOutcome.NOT_FOUND, detail=detail)
