"""Affected item commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

from breaking_bot.handlers.common import require_args, split_list
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.models.log import LogType

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation


async def add_affected(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Add a comma separated list of affected items; list them with no arguments."""
    incident = inv.incident
    whats = split_list(inv.args)

    if not whats:
        current = ", ".join(a.what for a in incident.affected) or "nothing yet"
        await ctx.reply(inv.message, f"Affected: {current}")
        return CommandResult.ok(detail=current)

    added = await ctx.db.add_affected(incident.id, whats)
    incident.affected.extend(added)

    added_names = tuple(a.what for a in added)
    duplicates = tuple(what for what in whats if what not in added_names)

    if not added_names:
        await ctx.reply(inv.message, f"Already affected: {', '.join(duplicates)}")
        return CommandResult(CommandOutcome.DUPLICATE, duplicates=duplicates)

    reply = f"Already affected: {', '.join(duplicates)}" if duplicates else None
    await ctx.settle(
        ctx.log_event(incident, ", ".join(added_names), inv.message, LogType.AFFECTED),
        ctx.acknowledge(inv.message, reply),
    )
    return CommandResult(CommandOutcome.OK, added=added_names, duplicates=duplicates)


async def remove_affected(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    what = require_args(inv.args, ".affectedrm <what>")

    if not await ctx.db.remove_affected(incident.id, what):
        await ctx.reject(inv.message, f"`{what}` is not listed as affected")
        return CommandResult.not_found(what)

    incident.affected = [a for a in incident.affected if a.what != what]
    await ctx.settle(
        ctx.log_event(incident, f"Removed {what}", inv.message, LogType.AFFECTED),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=what)
