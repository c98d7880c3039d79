"""Helpers shared by the command handlers.

Every write goes to storage first; the in-memory incident is only touched
once the write has returned.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from breaking_bot.core.date import parse_when
from breaking_bot.utils.async_helpers import CommandError, StorageError

if TYPE_CHECKING:
    from breaking_bot.core.context import BotContext
    from breaking_bot.models.incident import Incident


def split_list(text: str) -> list[str]:
    """Split a comma separated argument into unique, non-empty values, keeping order."""
    return list(dict.fromkeys(part.strip() for part in text.split(",") if part.strip()))


def parse_time_arg(text: str, now: datetime) -> datetime:
    """Parse a time argument, or raise a CommandError the user can act on."""
    try:
        return parse_when(text, now)
    except ValueError as e:
        raise CommandError(
            f"{e}. Try `now`, `14:05`, `10 min ago` or an ISO-8601 time like `2024-02-16T18:36`"
        ) from e


def require_args(text: str, usage: str) -> str:
    text = text.strip()
    if not text:
        raise CommandError(f"Usage: `{usage}`")
    return text


async def write_field(ctx: BotContext, incident: Incident, field: str, value: Any) -> None:
    """Persist one incident field, then reflect it in memory."""
    if not await ctx.db.set_incident_field(incident.id, field, value):
        raise StorageError(f"Incident {incident.id} not found while setting {field}")
    setattr(incident, field, value)


async def write_milestones(
    ctx: BotContext, incident: Incident, **milestones: datetime | None
) -> None:
    """Persist lifecycle timestamps, then reflect them in memory."""
    if not await ctx.db.set_incident_milestones(incident.id, **milestones):
        raise StorageError(f"Incident {incident.id} not found while setting milestones")
    for name, value in milestones.items():
        setattr(incident, name, value)
