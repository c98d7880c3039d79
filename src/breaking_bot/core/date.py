"""Date and time helpers.

All timestamps handled by the bot are naive datetimes in UTC, matching what
the database columns store.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

_RELATIVE_RE = re.compile(
    r"^(?P<num>\d+)\s*(?P<unit>s|secs?|seconds?|m|mins?|minutes?|h|hrs?|hours?|d|days?)\s+ago$"
)
_CLOCK_RE = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")
_COMPACT_CLOCK_RE = re.compile(r"^(?P<hour>[01]?\d|2[0-3])(?P<minute>[0-5]\d)$")
_HOUR_RE = re.compile(r"^(?P<hour>1?\d|2[0-3])$")

_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def utcnow() -> datetime:
    """Return the current time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def seconds_since(when: datetime, now: datetime) -> float:
    """Return the seconds elapsed from ``when`` to ``now`` (negative if in the future)."""
    return (now - when).total_seconds()


def parse_when(text: str, now: datetime | None = None) -> datetime:
    """Parse a user supplied point in time into a naive UTC datetime.

    Accepted forms are ``now``, ISO-8601 (optionally suffixed with ``utc``),
    a clock time for today (``14:05``, ``1405``, ``905`` or a bare hour) and
    relative times such as ``10 min ago`` or ``2h ago``.

    Args:
        text: User input
        now: Reference time (defaults to the current time)

    Returns:
        Parsed datetime

    Raises:
        ValueError: If the text cannot be interpreted
    """
    now = now or utcnow()
    natural = text.strip().lower()

    if natural.endswith("utc"):
        natural = natural[:-3].rstrip()

    if natural == "now":
        return now

    relative = _RELATIVE_RE.match(natural)
    if relative:
        seconds = _UNIT_SECONDS[relative.group("unit")[0]]
        return now - timedelta(seconds=int(relative.group("num")) * seconds)

    for pattern in (_CLOCK_RE, _COMPACT_CLOCK_RE, _HOUR_RE):
        clock = pattern.match(natural)
        if clock:
            minute = int(clock.groupdict().get("minute") or 0)
            return now.replace(
                hour=int(clock.group("hour")), minute=minute, second=0, microsecond=0
            )

    try:
        parsed = datetime.fromisoformat(natural.upper())
    except ValueError:
        raise ValueError(f"Unable to parse a time from {text!r}") from None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)

    return parsed


def friendly_short(when: datetime) -> str:
    """Format a UTC datetime like ``Feb 16, 2024 18:36 UTC``."""
    return f"{when:%b} {when.day}, {when:%Y %H:%M} UTC"


def human_duration(seconds: float) -> str:
    """Render a duration as the two most significant units, e.g. ``2h 5m``."""
    remaining = max(int(seconds), 0)
    parts: list[str] = []

    for unit, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        value, remaining = divmod(remaining, size)
        if value or (unit == "s" and not parts):
            parts.append(f"{value}{unit}")

    return " ".join(parts[:2])
