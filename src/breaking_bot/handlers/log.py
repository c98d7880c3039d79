"""Commands that append to the incident log."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from breaking_bot.handlers.common import require_args
from breaking_bot.models.command import CommandResult
from breaking_bot.models.log import LogType
from breaking_bot.utils.async_helpers import TrackerError

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation

log = structlog.get_logger()

LOG_COMMANDS: dict[str, tuple[LogType, str]] = {
    "factor": (LogType.CONTRIBUTING_FACTOR, ".factor <text>"),
    "note": (LogType.NOTE, ".note <text>"),
    "pr": (LogType.PR, ".pr <url>"),
    "update": (LogType.COMM_UPDATE, ".update <text>"),
}


async def add_entry(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Record a note, contributing factor, PR or comm update."""
    incident = inv.incident
    log_type, usage = LOG_COMMANDS[inv.command]
    text = require_args(inv.args, usage)

    context_url = text.split()[0] if log_type is LogType.PR else None
    entry = await ctx.log_event(incident, text, inv.message, log_type, context_url=context_url)

    effects = [ctx.acknowledge(inv.message)]
    if log_type is LogType.COMM_UPDATE and ctx.tracker is not None:
        effects.append(ctx.tracker.sync_comm_update(incident, entry))
    await ctx.settle(*effects)

    return CommandResult.ok(detail=str(entry.id))


async def action_item(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Create an action item in the tracker and record it in the log.

    ``summary => description`` splits the tracker summary from its body.
    """
    incident = inv.incident
    text = require_args(inv.args, ".ai <summary> [=> description]")
    permalink = await ctx.permalink(inv.message)

    item_url = None
    if ctx.tracker is not None:
        try:
            _, item_url = await ctx.tracker.new_action_item(incident, text, inv.user_id, permalink)
        except TrackerError as e:
            log.warning("action_item_create_failed", incident_id=incident.id, error=str(e))
            await ctx.reject(
                inv.message, f"Tracker rejected the action item, logged it here only: {e}"
            )

    entry = await ctx.db.add_log_entry(
        incident.id,
        LogType.ACTION_ITEM,
        text,
        inv.user_id,
        context_url=item_url or permalink,
    )

    await ctx.acknowledge(inv.message, f"Action item created: {item_url}" if item_url else None)
    return CommandResult.ok(detail=str(entry.id))
