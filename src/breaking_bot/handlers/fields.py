"""Commands that read or edit incident fields."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from breaking_bot.core.date import friendly_short, human_duration, seconds_since
from breaking_bot.core.fsm import Action, IncidentState
from breaking_bot.handlers.common import (
    parse_time_arg,
    require_args,
    write_field,
    write_milestones,
)
from breaking_bot.models.command import CommandResult
from breaking_bot.models.log import LogType
from breaking_bot.utils.async_helpers import CommandError
from breaking_bot.utils.logging import LogEventNames

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation

log = structlog.get_logger()

ROLE_LABELS = {
    "point": "Point",
    "comms": "Comms",
    "triage": "Triage",
    "eng_lead": "Eng lead",
    "assigned": "Assigned",
}


async def summary(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    text = inv.args.strip()

    if not text:
        current = incident.summary or "not set, use `.summary <text>`"
        await ctx.reply(inv.message, f"Summary: {current}")
        return CommandResult.ok(detail=incident.summary)

    await write_field(ctx, incident, "summary", text)
    await ctx.settle(
        ctx.log_event(incident, text, inv.message, LogType.SUMMARY),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=text)


async def title(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    text = require_args(inv.args, ".title <text>")

    previous = incident.title
    await write_field(ctx, incident, "title", text)
    await ctx.settle(
        ctx.log_event(incident, f"Title changed from {previous!r} to {text!r}", inv.message),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=text)


async def role(ctx: BotContext, inv: Invocation, field: str) -> CommandResult:
    """Show or assign one of the incident roles.

    Assigning ``me`` assigns the speaker. Once both point and comms are set
    on a Started incident it is acknowledged automatically.
    """
    machine = inv.incident_machine
    incident = machine.data()
    label = ROLE_LABELS[field]
    who = inv.args.strip()

    if not who:
        if field == "assigned":
            raise CommandError("Usage: `.assign <who>`")
        current = getattr(incident, field)
        await ctx.reply(inv.message, f"{label}: {current or 'nobody yet'}")
        return CommandResult.ok(detail=current)

    if who.lower() == "me":
        who = ctx.chat.fmt_user(inv.user_id)

    await write_field(ctx, incident, field, who)
    effects = [
        ctx.log_event(incident, f"{label}: {who}", inv.message),
        ctx.acknowledge(inv.message),
    ]

    if (
        field in ("point", "comms")
        and machine.primary_state is IncidentState.STARTED
        and machine.can(Action.ACK)
    ):
        await write_milestones(ctx, incident, acknowledged_at=ctx.clock())
        state = machine.transition(Action.ACK)
        log.info(
            LogEventNames.INCIDENT_TRANSITIONED,
            incident_id=incident.id,
            action=Action.ACK.value,
            state=state.value,
        )
        effects.append(ctx.log_event(incident, "Incident acknowledged", inv.message))

    await ctx.settle(*effects)
    return CommandResult.ok(detail=who)


async def priority(ctx: BotContext, inv: Invocation) -> CommandResult:
    incident = inv.incident
    text = inv.args.strip()
    priorities = ctx.priorities

    if not text:
        await ctx.reply(
            inv.message,
            f"Priority: {priorities.name(incident.priority)},"
            f" {priorities.description(incident.priority)}",
        )
        return CommandResult.ok(detail=str(incident.priority))

    new_priority = priorities.parse(text)
    if new_priority is None:
        valid = ", ".join(priorities.name(p) for p in priorities.numbers)
        raise CommandError(f"Unknown priority {text!r}. Valid priorities: {valid}")

    if new_priority == incident.priority:
        await ctx.reply(inv.message, f"Priority is already {priorities.name(new_priority)}")
        return CommandResult.ok(detail=str(new_priority))

    previous = incident.priority
    await write_field(ctx, incident, "priority", new_priority)
    await ctx.settle(
        ctx.log_event(
            incident,
            f"Priority changed from {priorities.name(previous)} to {priorities.name(new_priority)}",
            inv.message,
            LogType.PRIORITY,
        ),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=str(new_priority))


async def milestone(ctx: BotContext, inv: Invocation, field: str) -> CommandResult:
    """Set the genesis or detection time."""
    incident = inv.incident
    label = field.removesuffix("_at")
    when = parse_time_arg(require_args(inv.args, f".{inv.command} <when>"), ctx.clock())

    await write_milestones(ctx, incident, **{field: when})
    await ctx.settle(
        ctx.log_event(
            incident, f"{label.capitalize()} time set to {friendly_short(when)}", inv.message
        ),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=when.isoformat())


async def status(ctx: BotContext, inv: Invocation) -> CommandResult:
    machine = inv.incident_machine
    incident = machine.data()
    state = machine.state()
    now = ctx.clock()

    lines = [
        f"*{incident.title}*",
        f"State: {state.value} | Priority: {ctx.priorities.name(incident.priority)}"
        f" | Age: {human_duration(seconds_since(incident.created_at, now))}",
    ]

    roles = [
        f"{label}: {getattr(incident, field)}"
        for field, label in ROLE_LABELS.items()
        if getattr(incident, field)
    ]
    if roles:
        lines.append(" | ".join(roles))

    for blocker in incident.active_blockers:
        reason = f" ({blocker.reason})" if blocker.reason else ""
        lines.append(f"Blocked on #{blocker.id}: {blocker.whomst}{reason}")

    if incident.affected:
        lines.append("Affected: " + ", ".join(a.what for a in incident.affected))
    if incident.components:
        lines.append("Components: " + ", ".join(c.which for c in incident.components))
    if incident.tracker_uid and ctx.tracker is not None:
        lines.append(f"Tracking: {ctx.tracker.issue_url(incident.tracker_uid)}")

    text = "\n".join(lines)
    await ctx.reply(inv.message, text)
    return CommandResult.ok(detail=state.value)
