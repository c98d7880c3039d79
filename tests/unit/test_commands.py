"""Tests for command parsing and routing."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from breaking_bot.core.commands import (
    Command,
    CommandRouter,
    Requirement,
    parse_command,
    unmet_requirement,
)
from breaking_bot.core.fsm import Action, IncidentState, InvalidTransitionError
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.utils.async_helpers import CommandError, StorageError

T0 = datetime(2024, 2, 16, 18, 0)


class TestParseCommand:
    """Test parse_command."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            (".ack", ("ack", "")),
            ("  .ACK 10 min ago ", ("ack", "10 min ago")),
            (".summary  Checkout is down", ("summary", "Checkout is down")),
        ],
    )
    def test_commands(self, text, expected):
        assert parse_command(text) == expected

    @pytest.mark.parametrize("text", ["ack", "hello .ack", ".", ". ack", ""])
    def test_not_commands(self, text):
        assert parse_command(text) is None


class TestUnmetRequirement:
    """Test unmet_requirement."""

    def test_none_needs_nothing(self):
        assert unmet_requirement(Requirement.NONE, None) is None

    def test_missing_incident(self):
        assert unmet_requirement(Requirement.INCIDENT, None) == "There is no incident in this room"

    def test_terminal_incident_is_not_updatable(self, registry, incident_factory):
        machine = registry.register(incident_factory(canceled_at=T0))

        assert unmet_requirement(Requirement.INCIDENT, machine) is None
        assert unmet_requirement(Requirement.UPDATABLE, machine) == (
            "This incident is Canceled and can no longer be changed"
        )

    def test_resolved_incident_is_not_active(self, registry, incident_factory):
        machine = registry.register(incident_factory(resolved_at=T0))

        assert unmet_requirement(Requirement.UPDATABLE, machine) is None
        assert unmet_requirement(Requirement.ACTIVE, machine) == "This incident has been resolved"


def _router(ctx, handler):
    return CommandRouter(ctx, [Command(("go",), handler)])


class TestCommandRouter:
    """Test CommandRouter."""

    async def test_unknown_command(self, ctx, make_message):
        result = await CommandRouter(ctx).handle(make_message(".frobnicate"))

        assert result.outcome is CommandOutcome.NO_COMMAND
        ctx.chat.send_error.assert_not_awaited()

    async def test_plain_chatter(self, ctx, make_message):
        result = await CommandRouter(ctx).handle(make_message("is checkout down for anyone?"))
        assert result.outcome is CommandOutcome.NO_COMMAND

    async def test_default_command_table(self, ctx):
        names = CommandRouter(ctx).command_names

        assert {"start", "low", "ack", "resolve", "allclear", "ai", "status"} <= set(names)

    async def test_requirement_rejection(self, ctx, make_message):
        """Test that incident commands in a room without an incident are refused."""
        result = await CommandRouter(ctx).handle(make_message(".ack"))

        assert result.outcome is CommandOutcome.REJECTED
        ctx.chat.send_error.assert_awaited_once()
        assert ctx.chat.send_error.await_args.args[1] == "There is no incident in this room"

    async def test_passes_parsed_invocation(self, ctx, make_message, make_incident):
        machine = await make_incident()
        handler = AsyncMock(return_value=CommandResult.ok())

        await _router(ctx, handler).handle(make_message(".GO  now please"))

        inv = handler.await_args.args[1]
        assert inv.command == "go"
        assert inv.args == "now please"
        assert inv.machine is machine

    async def test_resolves_speaker(self, ctx, make_message, make_incident):
        await make_incident()
        ctx.users.maybe_resolve_user = AsyncMock(side_effect=RuntimeError("boom"))
        handler = AsyncMock(return_value=CommandResult.ok())

        result = await _router(ctx, handler).handle(make_message(".go", user_id="U42"))

        ctx.users.maybe_resolve_user.assert_awaited_once_with("U42")
        assert result.outcome is CommandOutcome.OK

    @pytest.mark.parametrize(
        ("error", "outcome", "reply"),
        [
            (CommandError("Usage: `.go`"), CommandOutcome.REJECTED, "Usage: `.go`"),
            (
                InvalidTransitionError(Action.RFR, IncidentState.STARTED),
                CommandOutcome.REJECTED,
                "Cannot rfr from Started",
            ),
            (StorageError("disk full"), CommandOutcome.ERROR, "DB write failed!"),
            (KeyError("oops"), CommandOutcome.ERROR, "Something went wrong handling `.go`"),
        ],
    )
    async def test_error_mapping(self, ctx, make_message, make_incident, error, outcome, reply):
        """Test that every handler failure is reported back into the room."""
        await make_incident()
        handler = AsyncMock(side_effect=error)

        result = await _router(ctx, handler).handle(make_message(".go"))

        assert result.outcome is outcome
        assert ctx.chat.send_error.await_args.args[1] == reply

    async def test_start_needs_no_incident(self, ctx, make_message):
        result = await CommandRouter(ctx).handle(make_message(".start Checkout is down", "CMAIN"))

        assert result.outcome is CommandOutcome.OK
        assert "CROOM1" in ctx.registry
