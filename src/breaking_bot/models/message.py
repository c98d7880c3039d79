"""Data models for chat messages."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ChatMessage:
    """An incoming message heard in a chat room."""

    room: str
    message_id: str
    user_id: str
    text: str
    timestamp: datetime
    thread_id: str | None = None  # None if not in a thread

    # Platform-specific metadata
    raw_event: dict[str, Any] = field(default_factory=dict)
