"""Chat command routing.

Commands are dot-prefixed messages such as ``.ack 10 min ago``. The router
looks the command up, checks what it requires of the room's incident,
refreshes the speaker's identity and calls the handler. Every failure is
reported back into the room; nothing a handler raises escapes ``handle``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING

import structlog

from breaking_bot.core.context import BotContext, Invocation
from breaking_bot.core.fsm import (
    IncidentMachine,
    InvalidTransitionError,
    is_incident_active,
    is_incident_updatable,
)
from breaking_bot.handlers import affected, blocker, component, fields, incident
from breaking_bot.handlers import log as log_handlers
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.utils.async_helpers import CommandError, StorageError
from breaking_bot.utils.logging import LogEventNames, bind_context, unbind_context

if TYPE_CHECKING:
    from breaking_bot.models.message import ChatMessage

log = structlog.get_logger()

COMMAND_PREFIX = "."

Handler = Callable[[BotContext, Invocation], Awaitable[CommandResult]]


class Requirement(Enum):
    """What a command needs from the room it is used in."""

    NONE = "none"
    INCIDENT = "incident"
    ACTIVE = "active"
    UPDATABLE = "updatable"


@dataclass(frozen=True)
class Command:
    names: tuple[str, ...]
    handler: Handler
    requirement: Requirement = Requirement.UPDATABLE


COMMANDS: list[Command] = [
    Command(("start", "low"), incident.start, Requirement.NONE),
    Command(("ack", "acknowledged"), incident.ack),
    Command(("mitigate", "mitigated"), incident.mitigate),
    Command(("resolve", "resolved", "stop", "allclear"), incident.resolve),
    Command(("unresolve",), incident.unresolve),
    Command(("restart",), incident.restart),
    Command(("unmitigate",), incident.unmitigate),
    Command(("rfr",), incident.rfr),
    Command(("complete",), incident.complete),
    Command(("cancel",), incident.cancel),
    Command(("summary",), fields.summary),
    Command(("title",), fields.title),
    Command(("point",), partial(fields.role, field="point")),
    Command(("comms",), partial(fields.role, field="comms")),
    Command(("triage",), partial(fields.role, field="triage")),
    Command(("eng",), partial(fields.role, field="eng_lead")),
    Command(("assign",), partial(fields.role, field="assigned")),
    Command(("priority",), fields.priority),
    Command(("genesis",), partial(fields.milestone, field="genesis_at")),
    Command(("detected",), partial(fields.milestone, field="detected_at")),
    Command(("affected",), affected.add_affected),
    Command(("affectedrm",), affected.remove_affected),
    Command(("component",), component.add_components),
    Command(("componentrm",), component.remove_component),
    Command(("blocker",), blocker.add_blocker, Requirement.ACTIVE),
    Command(("unblock",), blocker.unblock),
    Command(("unblockall",), blocker.unblock_all),
    Command(("ai",), log_handlers.action_item),
    Command(("factor", "note", "pr", "update"), log_handlers.add_entry),
    Command(("status",), fields.status, Requirement.INCIDENT),
]


def parse_command(text: str) -> tuple[str, str] | None:
    """Split a message into a lowercased command name and its raw arguments.

    Returns:
        (name, args), or None if the message is not a command
    """
    text = text.strip()
    if not text.startswith(COMMAND_PREFIX):
        return None

    name, _, args = text[len(COMMAND_PREFIX) :].partition(" ")
    name = name.strip().lower()
    if not name:
        return None
    return name, args.strip()


def unmet_requirement(requirement: Requirement, machine: IncidentMachine | None) -> str | None:
    """Return why a command cannot run against ``machine``, or None if it can."""
    if requirement is Requirement.NONE:
        return None
    if machine is None:
        return "There is no incident in this room"

    incident = machine.data()
    if requirement is Requirement.INCIDENT:
        return None
    if not is_incident_updatable(incident):
        return f"This incident is {machine.state().value} and can no longer be changed"
    if requirement is Requirement.ACTIVE and not is_incident_active(incident):
        return "This incident has been resolved"
    return None


class CommandRouter:
    """Dispatches chat messages to command handlers.

    Example:
        router = CommandRouter(ctx)
        result = await router.handle(message)
    """

    def __init__(self, ctx: BotContext, commands: Iterable[Command] | None = None) -> None:
        self._ctx = ctx
        self._commands: dict[str, Command] = {}
        for command in COMMANDS if commands is None else commands:
            for name in command.names:
                self._commands[name] = command

    @property
    def command_names(self) -> list[str]:
        return sorted(self._commands)

    async def handle(self, message: ChatMessage) -> CommandResult:
        """Handle one chat message.

        Args:
            message: Message heard in any joined room

        Returns:
            The handler's result, or a result describing why it was not run
        """
        parsed = parse_command(message.text)
        if parsed is None or parsed[0] not in self._commands:
            return CommandResult(CommandOutcome.NO_COMMAND)

        name, args = parsed
        command = self._commands[name]
        ctx = self._ctx
        machine = ctx.registry.get(message.room)

        log.info(
            LogEventNames.COMMAND_RECEIVED, command=name, room=message.room, user=message.user_id
        )

        problem = unmet_requirement(command.requirement, machine)
        if problem is not None:
            log.info(LogEventNames.COMMAND_REJECTED, command=name, reason=problem)
            await ctx.reject(message, problem)
            return CommandResult(CommandOutcome.REJECTED, detail=problem)

        try:
            await ctx.users.maybe_resolve_user(message.user_id)
        except Exception as e:
            log.warning("user_resolve_failed", user=message.user_id, error=str(e))

        inv = Invocation(message=message, command=name, args=args, machine=machine)
        bind_context(room=message.room, command=name)
        try:
            return await self._dispatch(command, inv)
        finally:
            unbind_context("room", "command")

    async def _dispatch(self, command: Command, inv: Invocation) -> CommandResult:
        ctx = self._ctx

        try:
            return await command.handler(ctx, inv)

        except CommandError as e:
            log.info(LogEventNames.COMMAND_REJECTED, reason=str(e))
            await ctx.reject(inv.message, str(e))
            return CommandResult(CommandOutcome.REJECTED, detail=str(e))

        except InvalidTransitionError as e:
            log.info(
                LogEventNames.COMMAND_REJECTED,
                action=e.action.value,
                state=e.state.value,
                reasons=e.reasons,
            )
            await ctx.reject(inv.message, str(e))
            return CommandResult(CommandOutcome.REJECTED, detail=str(e))

        except StorageError as e:
            log.error(LogEventNames.COMMAND_FAILED, error=str(e))
            await ctx.reject(inv.message, "DB write failed!")
            return CommandResult.error(str(e))

        except Exception as e:
            log.exception(LogEventNames.COMMAND_FAILED, error=str(e))
            await ctx.reject(inv.message, f"Something went wrong handling `.{inv.command}`")
            return CommandResult.error(str(e))
