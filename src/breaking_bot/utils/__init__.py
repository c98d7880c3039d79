"""Utility functions and helpers.

- async_helpers: Exceptions, retries and settled fan-out
- logging: Structured logging with secret sanitization
- security: Secret redaction
- health: Health check utilities
"""

from breaking_bot.utils.async_helpers import (
    BreakingBotError,
    CommandError,
    EngineError,
    ReporterError,
    StorageError,
    TrackerError,
    create_retry,
    gather_settled,
)
from breaking_bot.utils.health import (
    CheckResult,
    HealthChecker,
    HealthReport,
    HealthStatus,
)
from breaking_bot.utils.logging import (
    LogEventNames,
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from breaking_bot.utils.security import (
    RedactionError,
    SecretRedactor,
    SecurityError,
)

__all__ = [
    # Errors
    "BreakingBotError",
    "CommandError",
    "EngineError",
    "ReporterError",
    "StorageError",
    "TrackerError",
    # Async
    "create_retry",
    "gather_settled",
    # Health
    "CheckResult",
    "HealthChecker",
    "HealthReport",
    "HealthStatus",
    # Logging
    "LogEventNames",
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Security
    "RedactionError",
    "SecretRedactor",
    "SecurityError",
]
