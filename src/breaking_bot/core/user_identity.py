"""Chat user identity cache.

Each speaking user is resolved at most once per freshness window: display
name and email through the chat platform, then the matching tracker and
report platform accounts. A refresh never forgets what an earlier refresh
resolved; fields the new lookup could not fill are kept from the previous
entry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from breaking_bot.core.date import seconds_since, utcnow
from breaking_bot.models.user import ChatUser, UserEntry

if TYPE_CHECKING:
    from breaking_bot.interfaces.chat import ChatProvider
    from breaking_bot.interfaces.reporter import ReportPlatform
    from breaking_bot.interfaces.tracker import IssueTracker
    from breaking_bot.storage.database import Database

log = structlog.get_logger()

DEFAULT_FRESHNESS = 72 * 60 * 60


class UserIdentity:
    """Read-through cache of resolved user identities, persisted to storage."""

    def __init__(
        self,
        db: Database,
        chat: ChatProvider,
        tracker: IssueTracker | None = None,
        reporter: ReportPlatform | None = None,
        freshness: float = DEFAULT_FRESHNESS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._chat = chat
        self._tracker = tracker
        self._reporter = reporter
        self._freshness = freshness
        self._clock = clock
        self._entries: dict[str, UserEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, chat_user_id: str) -> UserEntry | None:
        return self._entries.get(chat_user_id)

    def display_name(self, chat_user_id: str) -> str:
        entry = self._entries.get(chat_user_id)
        return entry.name if entry and entry.name else chat_user_id

    async def load(self) -> int:
        """Load every stored entry into memory.

        Returns:
            Number of entries loaded
        """
        self._entries = await self._db.get_user_cache()
        log.info("user_cache_loaded", count=len(self._entries))
        return len(self._entries)

    def is_fresh(self, entry: UserEntry | None, now: datetime) -> bool:
        return entry is not None and seconds_since(entry.updated_at, now) < self._freshness

    async def maybe_resolve_user(self, chat_user_id: str) -> UserEntry | None:
        """Refresh a user's identities unless the cached entry is still fresh.

        Args:
            chat_user_id: The speaking user's chat id

        Returns:
            The current entry, or None if the user could not be resolved at all
        """
        previous = self._entries.get(chat_user_id)
        now = self._clock()
        if self.is_fresh(previous, now):
            return previous

        try:
            chat_user = await self._chat.resolve_user(chat_user_id)
        except Exception as e:
            log.warning("chat_user_lookup_failed", chat_user_id=chat_user_id, error=str(e))
            return previous

        tracker_user_id, reporter_user_id = await asyncio.gather(
            self._resolve_with(self._tracker, "tracker", chat_user, chat_user_id),
            self._resolve_with(self._reporter, "reporter", chat_user, chat_user_id),
        )

        entry = UserEntry(
            chat_user_id=chat_user_id,
            updated_at=now,
            tracker_user_id=tracker_user_id,
            reporter_user_id=reporter_user_id,
            name=chat_user.name,
        ).merged_over(previous)

        await self._db.upsert_user_entry(entry)
        self._entries[chat_user_id] = entry

        log.debug(
            "user_resolved",
            chat_user_id=chat_user_id,
            tracker_resolved=entry.tracker_user_id is not None,
            reporter_resolved=entry.reporter_user_id is not None,
        )
        return entry

    async def _resolve_with(
        self,
        collaborator: IssueTracker | ReportPlatform | None,
        kind: str,
        chat_user: ChatUser,
        chat_user_id: str,
    ) -> str | None:
        if collaborator is None:
            return None

        try:
            resolved = await collaborator.resolve_user_id(chat_user.email, chat_user_id)
        except Exception as e:
            log.warning(f"{kind}_user_lookup_failed", chat_user_id=chat_user_id, error=str(e))
            return None

        if resolved is None:
            log.warning(f"{kind}_user_not_found", chat_user_id=chat_user_id)
        return resolved
