"""Tests for the BreakingBot orchestrator."""

import asyncio
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from breaking_bot.config.schema import (
    BotConfig,
    JiraConfig,
    ReporterConfig,
    TrackerConfig,
    WpcomConfig,
)
from breaking_bot.core.bot import BreakingBot, StartupError, create_bot
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.models.message import ChatMessage


async def _messages(*messages: ChatMessage) -> AsyncIterator[ChatMessage]:
    for message in messages:
        yield message


@pytest.fixture
def bot(bot_config, db, mock_chat) -> BreakingBot:
    """Create a bot over in-memory storage and a mocked chat platform."""
    mock_chat.listen = MagicMock(return_value=_messages())
    return BreakingBot(bot_config, db, mock_chat)


class TestBreakingBotInit:
    """Test BreakingBot construction."""

    def test_engines_without_tracker(self, bot):
        assert [e.name for e in bot.engines] == ["annoyotron", "archivist"]

    def test_engines_with_tracker(self, bot_config, db, mock_chat, mock_tracker):
        bot = BreakingBot(bot_config, db, mock_chat, tracker=mock_tracker)

        assert [e.name for e in bot.engines] == ["syntrax", "annoyotron", "archivist"]

    def test_initial_stats(self, bot):
        assert bot.stats == {
            "commands_handled": 0,
            "errors_count": 0,
            "active_tasks": 0,
            "incidents": 0,
        }
        assert bot.is_running is False


class TestBreakingBotStart:
    """Test the startup sequence."""

    async def test_loads_incidents_and_joins_rooms(self, bot, db, mock_chat, now):
        await db.create_schema()
        await db.create_incident("Checkout is down", "CROOM9", 2, "U1", now)

        with patch.object(BreakingBot, "_setup_signal_handlers"):
            await bot.start()

        try:
            assert "CROOM9" in bot.registry
            joined = [call.args[0] for call in mock_chat.join_room.await_args_list]
            assert joined == ["CMAIN", "CROOM9"]
            assert all(engine.is_running for engine in bot.engines)
        finally:
            await bot.stop()

        assert not any(engine.is_running for engine in bot.engines)
        mock_chat.disconnect.assert_awaited_once()

    async def test_already_joined_rooms_are_skipped(self, bot, mock_chat):
        mock_chat.get_joined_rooms.return_value = {"CMAIN"}

        with patch.object(BreakingBot, "_setup_signal_handlers"):
            await bot.start()
        await bot.stop()

        mock_chat.join_room.assert_not_awaited()

    async def test_tracker_init_failure(self, bot_config, db, mock_chat, mock_tracker):
        mock_tracker.init.return_value = False
        bot = BreakingBot(bot_config, db, mock_chat, tracker=mock_tracker)

        with pytest.raises(StartupError, match="Issue tracker failed to initialize"):
            await bot.start()

        mock_chat.connect.assert_not_awaited()
        mock_tracker.aclose.assert_awaited_once()

    async def test_listener_dispatches_messages(self, bot, mock_chat, make_message):
        mock_chat.listen = MagicMock(
            return_value=_messages(make_message(".start Checkout is down", room="CMAIN"))
        )

        with patch.object(BreakingBot, "_setup_signal_handlers"):
            await bot.start()
        await asyncio.gather(*bot._active_tasks)

        assert "CROOM1" in bot.registry
        assert bot.stats["commands_handled"] == 1
        await bot.stop()


class TestBreakingBotProcessMessage:
    """Test message processing."""

    async def test_not_running(self, bot, make_message):
        result = await bot.process_message(make_message(".ack"))

        assert result.outcome is CommandOutcome.ERROR

    async def test_counts_commands_and_errors(self, bot, make_message):
        bot._semaphore = asyncio.Semaphore(1)
        bot._router = MagicMock()
        bot._router.handle = AsyncMock(
            side_effect=[
                CommandResult.ok(),
                CommandResult(CommandOutcome.NO_COMMAND),
                CommandResult.error("boom"),
                RuntimeError("unexpected"),
            ]
        )

        for _ in range(4):
            await bot.process_message(make_message(".ack"))

        assert bot.stats["commands_handled"] == 2
        assert bot.stats["errors_count"] == 2


class TestCreateBot:
    """Test the factory."""

    async def test_slack_only(self, bot_config: BotConfig):
        with patch("breaking_bot.adapters.chat.slack.AsyncApp"):
            bot = await create_bot(bot_config)

        assert bot._tracker is None
        assert bot._reporter is None

    async def test_with_tracker_and_reporter(self, bot_config: BotConfig):
        bot_config.tracker = TrackerConfig(
            provider="jira",
            jira=JiraConfig(
                host="example.atlassian.net",
                email="bot@example.com",
                api_token="token",
                tracking_project_key="BREAK",
                action_item_project_key="AI",
            ),
        )
        bot_config.reporter = ReporterConfig(
            provider="wpcom", wpcom=WpcomConfig(site="s", api_token="t")
        )

        with patch("breaking_bot.adapters.chat.slack.AsyncApp"):
            bot = await create_bot(bot_config)

        assert bot._tracker.name == "jira"
        assert bot._reporter.name == "WordPress.com"
        assert [e.name for e in bot.engines][0] == "syntrax"

    async def test_missing_provider_settings(self, bot_config: BotConfig):
        bot_config.tracker = TrackerConfig(provider="jira")

        with (
            patch("breaking_bot.adapters.chat.slack.AsyncApp"),
            pytest.raises(ValueError, match="Jira configuration required"),
        ):
            await create_bot(bot_config)
