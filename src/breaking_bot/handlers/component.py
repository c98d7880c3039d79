"""Component commands.

When the tracker is configured with strict components, names the tracker
does not know are rejected before anything is stored. Every change is
mirrored to the tracking issue.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from breaking_bot.handlers.common import require_args, split_list
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.models.log import LogType

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation
    from breaking_bot.interfaces.tracker import IssueTracker


def _strict_tracker(ctx: BotContext) -> IssueTracker | None:
    """Return the tracker when it validates component names, else None."""
    tracker_config = ctx.config.tracker
    if (
        tracker_config is not None
        and tracker_config.jira is not None
        and tracker_config.jira.strict_components
    ):
        return ctx.tracker
    return None


async def add_components(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    names = split_list(inv.args)

    if not names:
        current = ", ".join(c.which for c in incident.components) or "none yet"
        await ctx.reply(inv.message, f"Components: {current}")
        return CommandResult.ok(detail=current)

    rejected: tuple[str, ...] = ()
    strict_tracker = _strict_tracker(ctx)
    if strict_tracker is not None:
        valid = set(await strict_tracker.valid_component_names(names))
        rejected = tuple(name for name in names if name not in valid)
        names = [name for name in names if name in valid]

    if not names:
        await ctx.reject(inv.message, f"Unknown component(s): {', '.join(rejected)}")
        return CommandResult(CommandOutcome.REJECTED, rejected=rejected)

    added = await ctx.db.add_components(incident.id, names)
    incident.components.extend(added)

    added_names = tuple(c.which for c in added)
    duplicates = tuple(name for name in names if name not in added_names)

    notes = []
    if duplicates:
        notes.append(f"Already listed: {', '.join(duplicates)}")
    if rejected:
        notes.append(f"Unknown component(s): {', '.join(rejected)}")

    if not added_names:
        await ctx.reply(inv.message, ". ".join(notes))
        return CommandResult(CommandOutcome.DUPLICATE, duplicates=duplicates, rejected=rejected)

    effects = [
        ctx.log_event(incident, ", ".join(added_names), inv.message, LogType.COMPONENT),
        ctx.acknowledge(inv.message, ". ".join(notes) or None),
    ]
    if ctx.tracker is not None:
        effects.append(ctx.tracker.sync_components(incident))
    await ctx.settle(*effects)

    return CommandResult(
        CommandOutcome.OK, added=added_names, duplicates=duplicates, rejected=rejected
    )


async def remove_component(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    which = require_args(inv.args, ".componentrm <which>")

    if not await ctx.db.remove_component(incident.id, which):
        await ctx.reject(inv.message, f"`{which}` is not a component of this incident")
        return CommandResult.not_found(which)

    incident.components = [c for c in incident.components if c.which != which]

    effects = [
        ctx.log_event(incident, f"Removed {which}", inv.message, LogType.COMPONENT),
        ctx.acknowledge(inv.message),
    ]
    if ctx.tracker is not None:
        effects.append(ctx.tracker.sync_components(incident))
    await ctx.settle(*effects)

    return CommandResult.ok(detail=which)
