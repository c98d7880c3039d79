"""Abstract interface for chat platform integrations."""

from collections.abc import AsyncIterator
from typing import Protocol

from ..models.incident import Incident
from ..models.message import ChatMessage
from ..models.nag import NagCondition
from ..models.user import ChatUser


class ChatProvider(Protocol):
    """Abstract interface for chat platform integrations.

    This protocol defines the contract that chat platform adapters must
    implement. Rooms and messages are addressed by the platform's own ids.
    """

    async def connect(self) -> None:
        """
        Establish connection to the chat platform.

        Raises:
            ConnectionError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """Gracefully close the connection."""
        ...

    def listen(self) -> AsyncIterator[ChatMessage]:
        """
        Yield incoming messages from every room the bot is in.

        Yields:
            ChatMessage: Each incoming message
        """
        ...

    async def send_message(self, room: str, text: str, thread_id: str | None = None) -> str:
        """
        Post a message to a room.

        Returns:
            Id of the posted message
        """
        ...

    async def reply_to_message(self, room: str, text: str, message_id: str | None = None) -> str:
        """
        Reply to a message in its thread, or to the room if no message is given.

        Returns:
            Id of the posted message
        """
        ...

    async def react_to_message(self, room: str, reaction: str, message_id: str | None) -> None:
        """Add a reaction (name without colons) to a message."""
        ...

    async def send_error(self, room: str, text: str, message_id: str | None = None) -> None:
        """Report a command failure visibly in the room."""
        ...

    async def get_permalink(self, room: str, message_id: str) -> str | None:
        """Return a permanent link to a message, or None if unavailable."""
        ...

    async def join_room(self, room: str) -> None:
        """Join a room."""
        ...

    async def leave_room(self, room: str) -> None:
        """Leave a room."""
        ...

    async def get_joined_rooms(self) -> set[str]:
        """Return the ids of every room the bot is a member of."""
        ...

    async def create_incident_room(self, incident_id: int) -> str:
        """
        Create and join the dedicated room for an incident.

        Returns:
            Id of the new room
        """
        ...

    async def resolve_user(self, user_id: str) -> ChatUser:
        """Look up a user's display name and email."""
        ...

    async def send_nag(
        self,
        incident: Incident,
        condition: NagCondition,
        main_room: str | None = None,
    ) -> None:
        """Post an escalation reminder to the incident room."""
        ...

    def fmt_user(self, user_id: str) -> str:
        """Format a user id as a mention."""
        ...

    def fmt_room(self, room: str) -> str:
        """Format a room id as a link to the room."""
        ...
