"""Health check utilities for monitoring service health.

Checks configuration, the database connection, Slack token presence and the
issue tracker configuration, and rolls them up into one report.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from breaking_bot.utils.logging import LogEventNames
from breaking_bot.utils.security import mask_config_value

if TYPE_CHECKING:
    from breaking_bot.config.schema import BotConfig
    from breaking_bot.storage.database import Database

log = structlog.get_logger()


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class CheckResult:
    """Result of a single health check."""

    name: str
    status: HealthStatus
    message: str
    latency_ms: float | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthReport:
    """Overall health report."""

    healthy: bool
    status: HealthStatus
    timestamp: datetime
    checks: list[CheckResult]
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "healthy": self.healthy,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "checks": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": c.latency_ms,
                    "details": c.details,
                }
                for c in self.checks
            ],
            "details": self.details,
        }


class HealthChecker:
    """Performs health checks on the bot's dependencies.

    Example:
        checker = HealthChecker(config)
        report = await checker.run_all_checks()
        if not report.healthy:
            print(report.to_dict())
    """

    def __init__(self, config: BotConfig, db: Database | None = None) -> None:
        """Initialize the health checker.

        Args:
            config: Application configuration
            db: Open database to ping; one is created from config if omitted
        """
        self._config = config
        self._db = db

    async def run_all_checks(self) -> HealthReport:
        """Run all health checks concurrently and return a report."""
        log.info(LogEventNames.HEALTH_CHECK_START)
        start_time = datetime.now(UTC)

        results = await asyncio.gather(
            self._check_config(),
            self._check_database(),
            self._check_slack_tokens(),
            self._check_tracker(),
            return_exceptions=True,
        )

        checks: list[CheckResult] = []
        for result in results:
            if isinstance(result, BaseException):
                checks.append(
                    CheckResult(
                        name="unknown",
                        status=HealthStatus.UNHEALTHY,
                        message=f"Check failed with exception: {result}",
                    )
                )
            else:
                checks.append(result)

        if all(c.status == HealthStatus.HEALTHY for c in checks):
            overall_status = HealthStatus.HEALTHY
            healthy = True
        elif any(c.status == HealthStatus.UNHEALTHY for c in checks):
            overall_status = HealthStatus.UNHEALTHY
            healthy = False
        else:
            overall_status = HealthStatus.DEGRADED
            healthy = True

        report = HealthReport(
            healthy=healthy,
            status=overall_status,
            timestamp=start_time,
            checks=checks,
            details={
                "total_checks": len(checks),
                "healthy_checks": sum(1 for c in checks if c.status == HealthStatus.HEALTHY),
                "degraded_checks": sum(1 for c in checks if c.status == HealthStatus.DEGRADED),
                "unhealthy_checks": sum(1 for c in checks if c.status == HealthStatus.UNHEALTHY),
            },
        )

        log_method = log.info if healthy else log.warning
        log_method(
            LogEventNames.HEALTH_CHECK_COMPLETE,
            healthy=healthy,
            status=overall_status.value,
            checks_run=len(checks),
        )

        return report

    async def _check_config(self) -> CheckResult:
        if self._config.chat.provider == "slack" and not self._config.chat.slack:
            return CheckResult(
                name="config",
                status=HealthStatus.UNHEALTHY,
                message="Slack selected but not configured",
            )

        return CheckResult(
            name="config",
            status=HealthStatus.HEALTHY,
            message="Configuration valid",
            details={
                "chat_provider": self._config.chat.provider,
                "tracker_provider": self._config.tracker.provider if self._config.tracker else None,
                "reporter_provider": (
                    self._config.reporter.provider if self._config.reporter else None
                ),
                "priorities": sorted(self._config.priorities.levels),
            },
        )

    async def _check_database(self) -> CheckResult:
        from breaking_bot.storage.database import Database

        db = self._db or Database.from_url(self._config.database.url)
        start = time.monotonic()
        try:
            reachable = await db.ping()
        finally:
            if self._db is None:
                await db.dispose()
        latency = (time.monotonic() - start) * 1000

        if reachable:
            return CheckResult(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Database reachable",
                latency_ms=latency,
            )
        return CheckResult(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message="Database unreachable",
            latency_ms=latency,
        )

    async def _check_slack_tokens(self) -> CheckResult:
        """Check Slack token presence and format, without calling Slack."""
        slack_config = self._config.chat.slack
        if not slack_config:
            return CheckResult(
                name="slack_tokens",
                status=HealthStatus.UNHEALTHY,
                message="Slack configuration missing",
            )

        if not slack_config.bot_token.startswith("xoxb-"):
            return CheckResult(
                name="slack_tokens",
                status=HealthStatus.UNHEALTHY,
                message="Invalid bot token format",
            )

        if not slack_config.app_token.startswith("xapp-"):
            return CheckResult(
                name="slack_tokens",
                status=HealthStatus.UNHEALTHY,
                message="Invalid app token format",
            )

        return CheckResult(
            name="slack_tokens",
            status=HealthStatus.HEALTHY,
            message="Slack tokens configured",
            details={
                "bot_token": mask_config_value("bot_token", slack_config.bot_token),
                "app_token": mask_config_value("app_token", slack_config.app_token),
                "main_room_configured": slack_config.main_room is not None,
            },
        )

    async def _check_tracker(self) -> CheckResult:
        tracker = self._config.tracker
        if tracker is None:
            # The bot runs without a tracker, but Syntrax cannot
            return CheckResult(
                name="tracker",
                status=HealthStatus.DEGRADED,
                message="No issue tracker configured, tracker sync disabled",
            )

        jira = tracker.jira
        if jira is None:
            return CheckResult(
                name="tracker",
                status=HealthStatus.UNHEALTHY,
                message="Jira selected but not configured",
            )

        if not jira.api_token or jira.api_token.startswith("${"):
            return CheckResult(
                name="tracker",
                status=HealthStatus.UNHEALTHY,
                message="Jira API token not configured",
            )

        return CheckResult(
            name="tracker",
            status=HealthStatus.HEALTHY,
            message="Jira configured",
            details={"host": jira.host, "project": jira.tracking_project_key},
        )


def write_health_file(report: HealthReport, path: Path) -> None:
    """Write a health report to a file for external monitoring."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(report.to_dict(), indent=2))
        log.debug("health_file_written", path=str(path))
    except OSError as e:
        log.error("health_file_write_error", path=str(path), error=str(e))
