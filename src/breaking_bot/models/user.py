"""Data models for the chat user identity cache."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UserEntry:
    """Resolved identities of one chat user across collaborators."""

    chat_user_id: str
    updated_at: datetime
    tracker_user_id: str | None = None
    reporter_user_id: str | None = None
    name: str | None = None

    def merged_over(self, previous: "UserEntry | None") -> "UserEntry":
        """Return this entry with unset fields filled from ``previous``."""
        if previous is None:
            return self

        return UserEntry(
            chat_user_id=self.chat_user_id,
            updated_at=self.updated_at,
            tracker_user_id=self.tracker_user_id or previous.tracker_user_id,
            reporter_user_id=self.reporter_user_id or previous.reporter_user_id,
            name=self.name or previous.name,
        )


@dataclass(frozen=True)
class ChatUser:
    """A chat user as resolved by the chat platform."""

    name: str | None
    email: str | None
