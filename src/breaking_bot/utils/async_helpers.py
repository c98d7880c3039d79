"""Async utility functions for resilient collaborator calls.

This module provides:
- Custom exceptions for error handling
- Retry decorators with exponential backoff for outbound HTTP
- Settled fan-out helper that logs, but never propagates, per-call failures
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


# =============================================================================
# Custom Exceptions
# =============================================================================


class BreakingBotError(Exception):
    """Base exception for all bot errors."""


class StorageError(BreakingBotError):
    """A durable storage read or write failed."""


class EngineError(BreakingBotError):
    """A periodic engine was started without what it needs to run."""


class TrackerError(BreakingBotError):
    """The issue tracker rejected or failed a request."""


class ReporterError(BreakingBotError):
    """The report platform rejected or failed a request."""


class CommandError(BreakingBotError):
    """A chat command was refused; the message is shown to the user."""


# =============================================================================
# Retry Decorator
# =============================================================================


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_operation",
            attempt=retry_state.attempt_number,
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = (httpx.TimeoutException, httpx.NetworkError),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Create a customized retry decorator.

    Args:
        max_attempts: Maximum number of retry attempts.
        min_wait: Minimum wait time between retries (seconds).
        max_wait: Maximum wait time between retries (seconds).
        retry_on: Tuple of exception types to retry on.

    Returns:
        A retry decorator configured with the given parameters.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


# =============================================================================
# Fan-out
# =============================================================================


async def gather_settled(
    aws: Iterable[Awaitable[Any]],
    event: str = "side_effect_failed",
    **context: Any,
) -> list[Any]:
    """Await every awaitable independently and log the ones that failed.

    One failure never cancels or delays the others.

    Args:
        aws: Awaitables to run concurrently.
        event: Log event name used for each failure.
        **context: Extra fields bound to each failure log entry.

    Returns:
        Results in input order; failed entries hold their exception.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)

    for index, result in enumerate(results):
        if isinstance(result, Exception):
            log.error(
                event,
                index=index,
                error_type=type(result).__name__,
                error=str(result),
                **context,
            )

    return results
