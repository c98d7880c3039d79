"""Incident lifecycle commands.

Each transition is validated against the state machine before anything is
written, then persisted, reflected into the live incident and finally
applied to the machine. Chat acknowledgements and log entries follow as
settled side effects.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from breaking_bot.config.priorities import LOW_PRIORITY
from breaking_bot.core.date import friendly_short
from breaking_bot.core.fsm import Action, IncidentState
from breaking_bot.handlers.common import parse_time_arg, write_milestones
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.utils.async_helpers import CommandError, ReporterError, StorageError
from breaking_bot.utils.logging import LogEventNames

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext, Invocation
    from breaking_bot.interfaces.reporter import ReportPlatform

log = structlog.get_logger()


async def start(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Declare a new incident in a room of its own."""
    title = inv.args.strip()
    if not title:
        await ctx.reject(inv.message, f"An incident needs a title: `.{inv.command} <title>`")
        return CommandResult(CommandOutcome.REJECTED, detail="missing title")

    priority = ctx.priorities.default
    if inv.command == "low" and ctx.priorities.is_valid(LOW_PRIORITY):
        priority = LOW_PRIORITY

    incident = await ctx.db.start_incident(
        title, priority, inv.user_id, ctx.chat.create_incident_room, at=ctx.clock()
    )
    ctx.registry.register(incident)

    log.info(
        LogEventNames.INCIDENT_CREATED,
        incident_id=incident.id,
        room=incident.chat_room_uid,
        priority=priority,
    )

    tracker_link = ""
    if ctx.tracker is not None:
        try:
            tracker_uid = await ctx.tracker.create_issue(incident)
        except Exception as e:
            log.error("tracker_issue_create_failed", incident_id=incident.id, error=str(e))
        else:
            await ctx.db.set_incident_field(incident.id, "tracker_uid", tracker_uid)
            incident.tracker_uid = tracker_uid
            tracker_link = f"\nTracking: {ctx.tracker.issue_url(tracker_uid)}"

    name = ctx.priorities.name(priority)
    emoji = ctx.priorities.emoji(priority)
    room_link = ctx.chat.fmt_room(incident.chat_room_uid)

    effects = [
        ctx.chat.send_message(
            incident.chat_room_uid,
            f":{emoji}: *{title}* ({name}) declared by {ctx.chat.fmt_user(inv.user_id)}."
            f" Set `.point` and `.comms` to get going.{tracker_link}",
        ),
        ctx.log_event(incident, "Incident started", inv.message),
        ctx.acknowledge(inv.message, f"Started {room_link}"),
    ]
    if ctx.main_room and ctx.main_room != inv.room:
        effects.append(
            ctx.chat.send_message(
                ctx.main_room, f":{emoji}: New {name} incident {room_link}: *{title}*"
            )
        )
    await ctx.settle(*effects)

    return CommandResult(CommandOutcome.OK, added=(incident.chat_room_uid,))


async def _advance(
    ctx: BotContext,
    inv: Invocation,
    action: Action,
    field: str,
    implied: tuple[str, ...],
    label: str,
) -> CommandResult:
    """Set a milestone by transition, or correct it if it is already set."""
    machine = inv.incident_machine
    incident = machine.data()
    now = ctx.clock()
    when = parse_time_arg(inv.args, now) if inv.args.strip() else now

    if getattr(incident, field) is not None:
        if not inv.args.strip():
            raise CommandError(
                f"Incident is already {label}. Give a time to correct it: `.{inv.command} <when>`"
            )
        await write_milestones(ctx, incident, **{field: when})
        await ctx.settle(
            ctx.log_event(
                incident, f"{label.capitalize()} time set to {friendly_short(when)}", inv.message
            ),
            ctx.acknowledge(inv.message),
        )
        return CommandResult.ok(detail="corrected")

    machine.reachable(action)

    milestones = {name: when for name in implied if getattr(incident, name) is None}
    milestones[field] = when
    await write_milestones(ctx, incident, **milestones)
    state = machine.transition(action)

    log.info(
        LogEventNames.INCIDENT_TRANSITIONED,
        incident_id=incident.id,
        action=action.value,
        state=state.value,
    )
    await ctx.settle(
        ctx.log_event(incident, f"Incident {label}", inv.message),
        ctx.acknowledge(inv.message),
    )
    return CommandResult.ok(detail=state.value)


async def ack(ctx: BotContext, inv: Invocation) -> CommandResult:
    return await _advance(ctx, inv, Action.ACK, "acknowledged_at", (), "acknowledged")


async def mitigate(ctx: BotContext, inv: Invocation) -> CommandResult:
    return await _advance(
        ctx, inv, Action.MITIGATE, "mitigated_at", ("acknowledged_at",), "mitigated"
    )


async def resolve(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Resolve the incident, filling in skipped milestones and clearing blockers."""
    machine = inv.incident_machine
    result = await _advance(
        ctx,
        inv,
        Action.RESOLVE,
        "resolved_at",
        ("acknowledged_at", "mitigated_at"),
        "resolved",
    )

    incident = machine.data()
    if result.detail == IncidentState.RESOLVED.value and incident.is_blocked:
        now = ctx.clock()
        cleared = await ctx.db.unblock_all_blockers(incident.id, now)
        machine.unblock_all(now)
        await ctx.settle(
            ctx.log_event(
                incident,
                f"Cleared {len(cleared)} blocker(s) on resolve",
                inv.message,
            )
        )

    if result.detail == IncidentState.RESOLVED.value and ctx.main_room:
        await ctx.settle(
            ctx.chat.send_message(
                ctx.main_room,
                f"All clear: {ctx.chat.fmt_room(incident.chat_room_uid)}"
                f" *{incident.title}* is resolved",
            )
        )

    return result


async def _rewind(
    ctx: BotContext,
    inv: Invocation,
    action: Action,
    cleared: tuple[str, ...],
    label: str,
) -> CommandResult:
    machine = inv.incident_machine
    incident = machine.data()

    machine.check(action)
    await write_milestones(ctx, incident, **{name: None for name in cleared})
    state = machine.transition(action)

    log.info(
        LogEventNames.INCIDENT_TRANSITIONED,
        incident_id=incident.id,
        action=action.value,
        state=state.value,
    )
    await ctx.settle(
        ctx.log_event(incident, f"Incident {label}", inv.message),
        ctx.acknowledge(inv.message, f"Incident {label}, now {state.value}"),
    )
    return CommandResult.ok(detail=state.value)


async def unresolve(ctx: BotContext, inv: Invocation) -> CommandResult:
    return await _rewind(ctx, inv, Action.UNRESOLVE, ("resolved_at",), "unresolved")


async def unmitigate(ctx: BotContext, inv: Invocation) -> CommandResult:
    return await _rewind(ctx, inv, Action.UNMITIGATE, ("mitigated_at",), "unmitigated")


async def restart(ctx: BotContext, inv: Invocation) -> CommandResult:
    return await _rewind(
        ctx, inv, Action.RESTART, ("mitigated_at", "resolved_at"), "restarted"
    )


async def rfr(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Mark the incident ready for review, drafting a report when one is required."""
    machine = inv.incident_machine
    incident = machine.data()

    machine.check(Action.RFR)
    await write_milestones(ctx, incident, ready_for_review_at=ctx.clock())
    state = machine.transition(Action.RFR)

    log.info(
        LogEventNames.INCIDENT_TRANSITIONED,
        incident_id=incident.id,
        action=Action.RFR.value,
        state=state.value,
    )

    effects = [
        ctx.log_event(incident, "Incident ready for review", inv.message),
        ctx.acknowledge(inv.message),
    ]
    if ctx.reporter is not None and ctx.priorities.is_report_required(incident.priority):
        effects.append(_draft_report(ctx, ctx.reporter, inv))
    await ctx.settle(*effects)

    return CommandResult.ok(detail=state.value)


async def _draft_report(ctx: BotContext, reporter: ReportPlatform, inv: Invocation) -> None:
    incident = inv.incident
    entries = await ctx.db.get_log(incident.id)

    try:
        draft = await reporter.draft(incident, entries, ctx.users.display_name(inv.user_id))
    except ReporterError as e:
        log.warning("report_draft_failed", incident_id=incident.id, error=str(e))
        await ctx.reject(inv.message, f"Unable to draft the incident report: {e}")
        return

    await ctx.reply(inv.message, f"Report drafted: {draft}")


async def complete(ctx: BotContext, inv: Invocation) -> CommandResult:
    machine = inv.incident_machine
    incident = machine.data()

    machine.check(Action.COMPLETE)
    await write_milestones(ctx, incident, completed_at=ctx.clock())
    state = machine.transition(Action.COMPLETE)

    log.info(
        LogEventNames.INCIDENT_TRANSITIONED,
        incident_id=incident.id,
        action=Action.COMPLETE.value,
        state=state.value,
    )
    await ctx.settle(
        ctx.log_event(incident, "Incident completed", inv.message),
        ctx.acknowledge(inv.message, "Incident completed. Thanks everyone!"),
    )
    return CommandResult.ok(detail=state.value)


async def cancel(ctx: BotContext, inv: Invocation) -> CommandResult:
    """Cancel the incident. Canceled incidents are terminal."""
    machine = inv.incident_machine
    incident = machine.data()

    machine.check(Action.CANCEL)
    canceled_at = await ctx.db.cancel_incident(incident.id, ctx.clock())
    if canceled_at is None:
        raise StorageError(f"Incident {incident.id} already archived or canceled in storage")

    incident.canceled_at = canceled_at
    state = machine.transition(Action.CANCEL)

    log.info(
        LogEventNames.INCIDENT_TRANSITIONED,
        incident_id=incident.id,
        action=Action.CANCEL.value,
        state=state.value,
    )

    effects = [
        ctx.log_event(incident, "Incident canceled", inv.message),
        ctx.acknowledge(inv.message, "Incident canceled"),
    ]
    if ctx.main_room:
        effects.append(
            ctx.chat.send_message(
                ctx.main_room,
                f"Canceled: {ctx.chat.fmt_room(incident.chat_room_uid)} *{incident.title}*",
            )
        )
    await ctx.settle(*effects)

    return CommandResult.ok(detail=state.value)
