"""Main BreakingBot orchestrator that wires storage, chat and engines together.

This module implements the BreakingBot class that serves as the main entry
point for the bot. It:
- Loads persisted incidents and users before taking any command
- Initializes the optional tracker and report platform
- Connects to chat, joins incident rooms and starts the periodic engines
- Dispatches chat messages to the command router
- Handles graceful shutdown on signals (SIGTERM, SIGINT)
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import TYPE_CHECKING

import structlog

from breaking_bot.config.schema import BotConfig
from breaking_bot.core.commands import CommandRouter
from breaking_bot.core.context import BotContext
from breaking_bot.core.priority import PriorityTable
from breaking_bot.core.registry import IncidentRegistry
from breaking_bot.core.user_identity import UserIdentity
from breaking_bot.engines import Annoyotron, Archivist, PeriodicEngine, Syntrax
from breaking_bot.models.command import CommandOutcome, CommandResult
from breaking_bot.storage.database import Database
from breaking_bot.utils.logging import LogEventNames

if TYPE_CHECKING:
    from breaking_bot.interfaces.chat import ChatProvider
    from breaking_bot.interfaces.reporter import ReportPlatform
    from breaking_bot.interfaces.tracker import IssueTracker
    from breaking_bot.models.message import ChatMessage

log = structlog.get_logger()


class BotError(Exception):
    """Base exception for bot lifecycle errors."""


class StartupError(BotError):
    """Failed to start the bot."""


class BreakingBot:
    """Main orchestrator that coordinates all components.

    Responsibilities:
    - Load durable state into the registry and user cache
    - Route incoming messages to command handlers
    - Own the lifecycle of the periodic engines
    - Handle graceful startup and shutdown

    Startup is strictly ordered: nothing listens for commands until the
    registry holds every in-progress incident.

    Example:
        bot = BreakingBot(config, db, chat, tracker, reporter)
        await bot.start()  # Blocks until shutdown signal
    """

    DEFAULT_MAX_CONCURRENT = 10
    DEFAULT_SHUTDOWN_TIMEOUT = 30

    def __init__(
        self,
        config: BotConfig,
        db: Database,
        chat: ChatProvider,
        tracker: IssueTracker | None = None,
        reporter: ReportPlatform | None = None,
    ) -> None:
        """Initialize the BreakingBot.

        Args:
            config: Application configuration
            db: Durable storage
            chat: Chat provider adapter
            tracker: Issue tracker adapter, if configured
            reporter: Report platform adapter, if configured
        """
        self._config = config
        self._db = db
        self._chat = chat
        self._tracker = tracker
        self._reporter = reporter

        self._priorities = PriorityTable(config.priorities)
        self._registry = IncidentRegistry(self._priorities)
        self._users = UserIdentity(
            db, chat, tracker, reporter, freshness=config.user_cache_freshness
        )
        self._ctx = BotContext(
            config=config,
            db=db,
            registry=self._registry,
            priorities=self._priorities,
            chat=chat,
            users=self._users,
            tracker=tracker,
            reporter=reporter,
        )
        self._router = CommandRouter(self._ctx)
        self._engines = self._create_engines()

        # Concurrency control
        self._semaphore: asyncio.Semaphore | None = None
        self._active_tasks: set[asyncio.Task[CommandResult]] = set()

        # Lifecycle state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

        # Statistics
        self._commands_handled = 0
        self._errors_count = 0

    @property
    def is_running(self) -> bool:
        """Return True if the bot is currently running."""
        return self._running

    @property
    def registry(self) -> IncidentRegistry:
        return self._registry

    @property
    def engines(self) -> list[PeriodicEngine]:
        return list(self._engines)

    @property
    def stats(self) -> dict[str, int]:
        """Return processing statistics."""
        return {
            "commands_handled": self._commands_handled,
            "errors_count": self._errors_count,
            "active_tasks": len(self._active_tasks),
            "incidents": len(self._registry),
        }

    def _create_engines(self) -> list[PeriodicEngine]:
        cfg = self._config.engines
        engines: list[PeriodicEngine] = []

        if self._tracker is not None:
            engines.append(
                Syntrax(
                    self._registry,
                    self._db,
                    self._tracker,
                    interval=cfg.sync_interval,
                    jitter=cfg.sync_jitter,
                )
            )

        engines.append(
            Annoyotron(
                self._registry,
                self._db,
                self._chat,
                self._priorities,
                main_room=self._ctx.main_room,
                interval=cfg.nag_interval,
            )
        )
        engines.append(
            Archivist(
                self._registry,
                self._db,
                self._chat,
                interval=cfg.archive_interval,
                completed_retention=cfg.completed_retention,
                review_retention=cfg.review_retention,
            )
        )
        return engines

    async def start(self) -> None:
        """Start the bot and begin handling commands.

        This method:
        1. Creates the schema and loads in-progress incidents
        2. Loads the user identity cache
        3. Initializes the tracker and report platform
        4. Connects to chat and joins every incident room
        5. Starts the periodic engines
        6. Blocks listening for messages until shutdown

        Raises:
            StartupError: If startup fails
        """
        if self._running:
            log.warning("bot_already_running")
            return

        log.info(LogEventNames.BOT_STARTING, engines=[e.name for e in self._engines])

        try:
            self._semaphore = asyncio.Semaphore(self.DEFAULT_MAX_CONCURRENT)
            self._shutdown_event = asyncio.Event()

            await self._db.create_schema()
            await self._registry.load(self._db)
            await self._users.load()

            await self._init_collaborators()

            await self._chat.connect()
            log.info(LogEventNames.CHAT_CONNECTED)
            await self._join_incident_rooms()

            for engine in self._engines:
                engine.start()

            self._setup_signal_handlers()

            self._running = True
            log.info(LogEventNames.BOT_STARTED, incidents=len(self._registry))

            await self._listen_for_messages()

        except Exception as e:
            log.exception("bot_startup_failed", error=str(e))
            await self._cleanup()
            raise StartupError(f"Failed to start bot: {e}") from e

    async def stop(self) -> None:
        """Gracefully stop the bot.

        Engines are stopped first so no new ticks begin, then in-flight
        commands get a bounded time to finish before chat is disconnected.
        """
        if not self._running:
            log.warning("bot_not_running")
            return

        log.info(LogEventNames.BOT_STOPPING, active_tasks=len(self._active_tasks))

        if self._shutdown_event:
            self._shutdown_event.set()

        for engine in self._engines:
            await engine.stop()

        await self._wait_for_tasks()
        await self._cleanup()

        self._running = False
        log.info(
            LogEventNames.BOT_STOPPED,
            commands_handled=self._commands_handled,
            errors=self._errors_count,
        )

    async def process_message(self, message: ChatMessage) -> CommandResult:
        """Handle a single message, respecting the concurrency limit.

        Args:
            message: Message to handle

        Returns:
            The router's result
        """
        if not self._semaphore:
            return CommandResult.error("bot is not running")

        async with self._semaphore:
            try:
                result = await self._router.handle(message)
            except Exception as e:
                log.exception(
                    "message_processing_error",
                    message_id=message.message_id,
                    error=str(e),
                )
                self._errors_count += 1
                return CommandResult.error(str(e))

            if result.outcome is not CommandOutcome.NO_COMMAND:
                self._commands_handled += 1
            if result.outcome is CommandOutcome.ERROR:
                self._errors_count += 1
            return result

    async def _init_collaborators(self) -> None:
        if self._tracker is not None and not await self._tracker.init():
            raise StartupError("Issue tracker failed to initialize")
        if self._reporter is not None and not await self._reporter.init():
            raise StartupError("Report platform failed to initialize")

    async def _join_incident_rooms(self) -> None:
        """Join the main room and the room of every live incident."""
        joined = await self._chat.get_joined_rooms()
        wanted = set(self._registry)
        if self._ctx.main_room:
            wanted.add(self._ctx.main_room)

        for room in sorted(wanted - joined):
            try:
                await self._chat.join_room(room)
            except Exception as e:
                log.warning("join_room_failed", room=room, error=str(e))

    async def _listen_for_messages(self) -> None:
        """Listen for incoming messages until shutdown is triggered."""
        log.info("starting_message_listener")

        try:
            async for message in self._chat.listen():
                if self._shutdown_event and self._shutdown_event.is_set():
                    log.info("shutdown_signal_received_stopping_listener")
                    break

                task = asyncio.create_task(
                    self.process_message(message),
                    name=f"command_{message.message_id}",
                )
                self._active_tasks.add(task)
                task.add_done_callback(self._active_tasks.discard)

        except asyncio.CancelledError:
            log.info("message_listener_cancelled")
        except Exception as e:
            log.exception(LogEventNames.CHAT_CONNECTION_ERROR, error=str(e))
            raise

    async def _wait_for_tasks(self) -> None:
        """Wait for in-flight commands to complete, with a timeout."""
        if not self._active_tasks:
            return

        log.info("waiting_for_active_tasks", count=len(self._active_tasks))

        done, pending = await asyncio.wait(
            self._active_tasks,
            timeout=self.DEFAULT_SHUTDOWN_TIMEOUT,
        )

        if pending:
            log.warning("cancelling_pending_tasks", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        log.info("tasks_completed", completed=len(done), cancelled=len(pending))

    async def _cleanup(self) -> None:
        """Stop engines and release every collaborator."""
        log.debug("cleaning_up_resources")

        for engine in self._engines:
            await engine.stop()

        try:
            await self._chat.disconnect()
            log.info(LogEventNames.CHAT_DISCONNECTED)
        except Exception as e:
            log.warning("chat_disconnect_error", error=str(e))

        for collaborator in (self._tracker, self._reporter):
            if collaborator is None:
                continue
            with contextlib.suppress(Exception):
                await collaborator.aclose()

        await self._db.dispose()
        self._active_tasks.clear()

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s: asyncio.create_task(self._handle_signal(s)),
                sig,
            )
            log.debug("signal_handler_registered", signal=sig.name)

    async def _handle_signal(self, sig: signal.Signals) -> None:
        log.info("received_signal", signal=sig.name)
        await self.stop()


async def create_bot(config: BotConfig) -> BreakingBot:
    """Factory function to create a BreakingBot with all dependencies.

    Args:
        config: Application configuration

    Returns:
        Configured BreakingBot instance

    Raises:
        ValueError: If a configured provider is missing its settings
    """
    db = Database.from_url(config.database.url, echo=config.database.echo)
    chat = await _create_chat_adapter(config)
    tracker = await _create_tracker_adapter(config)
    reporter = await _create_reporter_adapter(config)

    return BreakingBot(config, db, chat, tracker, reporter)


async def _create_chat_adapter(config: BotConfig) -> ChatProvider:
    provider = config.chat.provider

    if provider == "slack":
        if not config.chat.slack:
            raise ValueError("Slack configuration required when provider is 'slack'")
        # Import here to avoid loading unnecessary dependencies
        from breaking_bot.adapters.chat.slack import SlackAdapter

        return SlackAdapter(config.chat.slack)

    raise ValueError(f"Unsupported chat provider: {provider}")


async def _create_tracker_adapter(config: BotConfig) -> IssueTracker | None:
    """Create the issue tracker adapter, or None if no tracker is configured."""
    if config.tracker is None:
        return None

    provider = config.tracker.provider

    if provider == "jira":
        if not config.tracker.jira:
            raise ValueError("Jira configuration required when provider is 'jira'")
        from breaking_bot.adapters.tracker.jira import JiraAdapter

        return JiraAdapter(config.tracker.jira, config.retry, config.priorities)

    raise ValueError(f"Unsupported tracker provider: {provider}")


async def _create_reporter_adapter(config: BotConfig) -> ReportPlatform | None:
    """Create the report platform adapter, or None if none is configured."""
    if config.reporter is None:
        return None

    provider = config.reporter.provider

    if provider == "wpcom":
        if not config.reporter.wpcom:
            raise ValueError("WordPress.com configuration required when provider is 'wpcom'")
        from breaking_bot.adapters.reporter.wpcom import WpcomAdapter

        return WpcomAdapter(config.reporter.wpcom, config.retry)

    raise ValueError(f"Unsupported reporter provider: {provider}")
