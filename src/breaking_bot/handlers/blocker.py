"""Blocker commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

from breaking_bot.core.fsm import BLOCKABLE_STATES, Action, InvalidTransitionError
from breaking_bot.handlers.common import require_args
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.models.log import LogType
from breaking_bot.utils.async_helpers import CommandError

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation


async def add_blocker(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Block the incident on someone or something: ``.blocker <whomst> [=> reason]``."""
    machine = inv.incident_machine
    incident = machine.data()

    whomst, _, reason = require_args(inv.args, ".blocker <whomst> [=> reason]").partition("=>")
    whomst = whomst.strip()
    if not whomst:
        raise CommandError("Usage: `.blocker <whomst> [=> reason]`")

    if machine.primary_state not in BLOCKABLE_STATES:
        raise InvalidTransitionError(Action.BLOCK, machine.state())

    blocker = await ctx.db.add_blocker(incident.id, whomst, reason.strip() or None, ctx.clock())
    newly_blocked = machine.block(blocker)

    text = f"{blocker.whomst} ({blocker.reason})" if blocker.reason else blocker.whomst
    reply = f"Blocker #{blocker.id} added"
    if newly_blocked:
        reply += ", incident is now blocked"

    await ctx.settle(
        ctx.log_event(incident, text, inv.message, LogType.BLOCKER),
        ctx.acknowledge(inv.message, reply),
    )
    return CommandResult(CommandOutcome.OK, added=(str(blocker.id),))


async def unblock(ctx: BotContext, inv: Invocation) -> CommandResult:
    machine = inv.incident_machine
    incident = machine.data()

    raw = require_args(inv.args, ".unblock <id>").lstrip("#")
    try:
        blocker_id = int(raw)
    except ValueError:
        raise CommandError(f"Blocker ids are numbers, got {raw!r}") from None

    now = ctx.clock()
    cleared = await ctx.db.unblock_blocker(incident.id, blocker_id, now)
    if cleared is None:
        await ctx.reject(inv.message, f"No active blocker #{blocker_id}")
        return CommandResult.not_found(str(blocker_id))

    last = machine.unblock(blocker_id, now)
    reply = f"Unblocked #{blocker_id}"
    if last:
        reply += f", incident is {machine.state().value} again"

    await ctx.settle(
        ctx.log_event(incident, f"#{blocker_id} {cleared.whomst}", inv.message, LogType.UNBLOCK),
        ctx.acknowledge(inv.message, reply),
    )
    return CommandResult.ok(detail=str(blocker_id))


async def unblock_all(ctx: BotContext, inv: Invocation) -> CommandResult:
    machine = inv.incident_machine
    incident = machine.data()

    now = ctx.clock()
    cleared = await ctx.db.unblock_all_blockers(incident.id, now)
    if not cleared:
        await ctx.reject(inv.message, "No active blockers")
        return CommandResult.not_found("blockers")

    machine.unblock_all(now)
    await ctx.settle(
        ctx.log_event(
            incident,
            ", ".join(f"#{b.id} {b.whomst}" for b in cleared),
            inv.message,
            LogType.UNBLOCK,
        ),
        ctx.acknowledge(inv.message, f"Cleared {len(cleared)} blocker(s)"),
    )
    return CommandResult(CommandOutcome.OK, added=tuple(str(b.id) for b in cleared))
