"""Tests for incident lifecycle commands."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from breaking_bot.core.fsm import IncidentState, InvalidTransitionError
from breaking_bot.handlers import incident as handlers
from breaking_bot.models.command import CommandOutcome
from breaking_bot.models.incident import Component
from breaking_bot.models.log import LogType
from breaking_bot.utils.async_helpers import CommandError, ReporterError

T0 = datetime(2024, 2, 16, 18, 0)


async def _log_texts(ctx, machine) -> list[str]:
    return [e.text for e in await ctx.db.get_log(machine.data().id)]


class TestStart:
    """Test declaring incidents."""

    async def test_start_creates_room_and_registers(self, ctx, invoke, now):
        result = await handlers.start(ctx, invoke("start", "Checkout is down", room="CMAIN"))

        assert result.outcome is CommandOutcome.OK
        assert result.added == ("CROOM1",)
        machine = ctx.registry["CROOM1"]
        assert machine.state() is IncidentState.STARTED
        assert machine.data().priority == 2
        assert machine.data().created_at == now
        assert await _log_texts(ctx, machine) == ["Incident started"]

        room_message = ctx.chat.send_message.await_args_list[0].args
        assert room_message[0] == "CROOM1"
        assert "*Checkout is down* (P2)" in room_message[1]

    async def test_start_announces_in_main_room(self, ctx, invoke):
        await handlers.start(ctx, invoke("start", "Checkout is down", room="CELSEWHERE"))

        rooms = [call.args[0] for call in ctx.chat.send_message.await_args_list]
        assert rooms == ["CROOM1", "CMAIN"]

    async def test_low_uses_low_priority(self, ctx, invoke):
        await handlers.start(ctx, invoke("low", "Slow dashboards", room="CMAIN"))

        assert ctx.registry["CROOM1"].data().priority == 3

    async def test_start_without_title(self, ctx, invoke):
        result = await handlers.start(ctx, invoke("start", "", room="CMAIN"))

        assert result.outcome is CommandOutcome.REJECTED
        assert len(ctx.registry) == 0
        ctx.chat.create_incident_room.assert_not_awaited()

    async def test_start_creates_tracking_issue(self, ctx, invoke, mock_tracker):
        ctx.tracker = mock_tracker

        await handlers.start(ctx, invoke("start", "Checkout is down", room="CMAIN"))

        incident = ctx.registry["CROOM1"].data()
        assert incident.tracker_uid == "BREAK-1"
        assert (await ctx.db.find_incident("CROOM1")).tracker_uid == "BREAK-1"

    async def test_tracker_failure_does_not_block_start(self, ctx, invoke, mock_tracker):
        ctx.tracker = mock_tracker
        mock_tracker.create_issue.side_effect = RuntimeError("jira down")

        result = await handlers.start(ctx, invoke("start", "Checkout is down", room="CMAIN"))

        assert result.outcome is CommandOutcome.OK
        assert ctx.registry["CROOM1"].data().tracker_uid is None

    async def test_room_failure_leaves_nothing_behind(self, ctx, invoke):
        ctx.chat.create_incident_room.side_effect = RuntimeError("name_taken")

        with pytest.raises(RuntimeError):
            await handlers.start(ctx, invoke("start", "Checkout is down", room="CMAIN"))

        assert len(ctx.registry) == 0
        assert await ctx.db.find_incidents_in_progress() == []


class TestAdvance:
    """Test ack, mitigate and resolve."""

    async def test_ack_sets_time_and_state(self, ctx, invoke, make_incident, now):
        machine = await make_incident()

        result = await handlers.ack(ctx, invoke("ack"))

        assert result.detail == "Acknowledged"
        assert machine.data().acknowledged_at == now
        assert (await ctx.db.find_incident("CROOM1")).acknowledged_at == now
        assert "Incident acknowledged" in await _log_texts(ctx, machine)

    async def test_ack_with_time(self, ctx, invoke, make_incident, now):
        machine = await make_incident()

        await handlers.ack(ctx, invoke("ack", "10 min ago"))

        assert machine.data().acknowledged_at == now - timedelta(minutes=10)

    async def test_repeat_without_time_is_refused(self, ctx, invoke, make_incident):
        await make_incident(acknowledged_at=T0)

        with pytest.raises(CommandError, match="already acknowledged"):
            await handlers.ack(ctx, invoke("ack"))

    async def test_repeat_with_time_corrects(self, ctx, invoke, make_incident):
        """Test that a given time corrects a milestone without a transition."""
        machine = await make_incident(acknowledged_at=T0, mitigated_at=T0)

        result = await handlers.ack(ctx, invoke("ack", "2024-02-16T17:55"))

        assert result.detail == "corrected"
        assert machine.data().acknowledged_at == datetime(2024, 2, 16, 17, 55)
        assert machine.primary_state is IncidentState.MITIGATED

    async def test_mitigate_fills_acknowledged(self, ctx, invoke, make_incident, now):
        machine = await make_incident()

        await handlers.mitigate(ctx, invoke("mitigate"))

        assert machine.primary_state is IncidentState.MITIGATED
        assert machine.data().acknowledged_at == now

    async def test_unparseable_time(self, ctx, invoke, make_incident):
        await make_incident()

        with pytest.raises(CommandError, match="Try `now`"):
            await handlers.mitigate(ctx, invoke("mitigate", "whenever"))

    async def test_resolve_clears_blockers_and_announces(self, ctx, invoke, make_incident, now):
        machine = await make_incident(acknowledged_at=T0)
        blocker = await ctx.db.add_blocker(machine.data().id, "vendor", at=T0)
        machine.block(blocker)

        result = await handlers.resolve(ctx, invoke("resolve"))

        assert result.detail == "Resolved"
        assert machine.state() is IncidentState.RESOLVED
        assert not machine.data().is_blocked
        assert machine.data().mitigated_at == now
        assert "Cleared 1 blocker(s) on resolve" in await _log_texts(ctx, machine)
        announcement = ctx.chat.send_message.await_args_list[-1].args
        assert announcement[0] == "CMAIN"
        assert "is resolved" in announcement[1]

    async def test_resolve_does_not_move_earlier_milestones(self, ctx, invoke, make_incident):
        machine = await make_incident(acknowledged_at=T0, mitigated_at=T0)

        await handlers.resolve(ctx, invoke("resolve"))

        assert machine.data().acknowledged_at == T0
        assert machine.data().mitigated_at == T0


class TestRewind:
    """Test unresolve, unmitigate and restart."""

    async def test_unresolve(self, ctx, invoke, make_incident):
        machine = await make_incident(acknowledged_at=T0, mitigated_at=T0, resolved_at=T0)

        result = await handlers.unresolve(ctx, invoke("unresolve"))

        assert result.detail == "Mitigated"
        assert machine.data().resolved_at is None
        assert (await ctx.db.find_incident("CROOM1")).resolved_at is None

    async def test_restart_keeps_acknowledgement(self, ctx, invoke, make_incident):
        machine = await make_incident(acknowledged_at=T0, mitigated_at=T0, resolved_at=T0)

        result = await handlers.restart(ctx, invoke("restart"))

        assert result.detail == "Acknowledged"
        assert machine.data().acknowledged_at == T0
        assert machine.data().mitigated_at is None
        assert machine.data().resolved_at is None

    async def test_unmitigate_from_wrong_state(self, ctx, invoke, make_incident):
        machine = await make_incident(acknowledged_at=T0)

        with pytest.raises(InvalidTransitionError):
            await handlers.unmitigate(ctx, invoke("unmitigate"))

        assert machine.primary_state is IncidentState.ACKNOWLEDGED


def _reviewable() -> dict[str, object]:
    return {
        "assigned": "U9",
        "summary": "Checkout returned 500s",
        "genesis_at": T0,
        "detected_at": T0,
        "acknowledged_at": T0,
        "mitigated_at": T0,
        "resolved_at": T0,
    }


class TestReview:
    """Test rfr, complete and cancel."""

    async def test_rfr_refused_lists_missing(self, ctx, invoke, make_incident):
        machine = await make_incident(resolved_at=T0)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await handlers.rfr(ctx, invoke("rfr"))

        assert "`.summary` must be set" in exc_info.value.reasons
        assert machine.data().ready_for_review_at is None

    async def test_rfr_drafts_required_report(self, ctx, invoke, make_incident, now):
        machine = await make_incident(**_reviewable())
        machine.data().components.append(Component(machine.data().id, "checkout"))
        ctx.reporter = AsyncMock()
        ctx.reporter.draft.return_value = "https://example.wordpress.com/?p=1"

        result = await handlers.rfr(ctx, invoke("rfr"))

        assert result.detail == "Ready For Review"
        assert machine.data().ready_for_review_at == now
        ctx.reporter.draft.assert_awaited_once()
        replies = [call.args[1] for call in ctx.chat.reply_to_message.await_args_list]
        assert "Report drafted: https://example.wordpress.com/?p=1" in replies

    async def test_report_failure_is_reported(self, ctx, invoke, make_incident):
        machine = await make_incident(**_reviewable())
        machine.data().components.append(Component(machine.data().id, "checkout"))
        ctx.reporter = AsyncMock()
        ctx.reporter.draft.side_effect = ReporterError("WordPress.com is not configured")

        result = await handlers.rfr(ctx, invoke("rfr"))

        assert result.outcome is CommandOutcome.OK
        assert "Unable to draft" in ctx.chat.send_error.await_args.args[1]

    async def test_complete_requires_review(self, ctx, invoke, make_incident):
        await make_incident(priority=1, resolved_at=T0)

        with pytest.raises(InvalidTransitionError, match="must be reviewed"):
            await handlers.complete(ctx, invoke("complete"))

    async def test_complete_low_priority(self, ctx, invoke, make_incident, now):
        machine = await make_incident(priority=3, resolved_at=T0)

        result = await handlers.complete(ctx, invoke("complete"))

        assert result.detail == "Completed"
        assert machine.data().completed_at == now

    async def test_cancel(self, ctx, invoke, make_incident, now):
        machine = await make_incident()

        result = await handlers.cancel(ctx, invoke("cancel"))

        assert result.detail == "Canceled"
        assert machine.data().canceled_at == now
        assert await ctx.db.find_incidents_in_progress() == []
        rooms = [call.args[0] for call in ctx.chat.send_message.await_args_list]
        assert rooms == ["CMAIN"]

    async def test_log_entries_link_to_message(self, ctx, invoke, make_incident):
        machine = await make_incident()

        await handlers.cancel(ctx, invoke("cancel"))

        (entry,) = await ctx.db.get_log(machine.data().id)
        assert entry.type is LogType.EVENT
        assert entry.context_url == "https://example.slack.com/archives/C1/p1"
