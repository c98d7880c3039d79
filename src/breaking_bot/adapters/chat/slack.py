"""Slack chat adapter using slack-bolt.

This module implements the ChatProvider protocol for Slack using the
slack-bolt library with Socket Mode for real-time events.

Features:
- Socket Mode connection for real-time message delivery
- Every joined channel is listened to; incident rooms are plain channels
- Thread support for replies
- Escalation reminders, echoed to the main room when nobody holds a role
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.app.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from ...config.schema import SlackConfig
from ...core.date import utcnow
from ...models.message import ChatMessage
from ...models.nag import NagCondition
from ...models.user import ChatUser

if TYPE_CHECKING:
    from slack_bolt.context.async_context import AsyncBoltContext

    from ...models.incident import Incident


log = structlog.get_logger()

# Incident room alerts, then the main room echo where there is one
_NAG_TEXTS: dict[NagCondition, tuple[str, str | None]] = {
    NagCondition.NO_POINT: (
        "> :rotating_light: *No .point set!*\n"
        "> Hey <!here>, nobody has grabbed point yet! Can somebody take it with `.point`?",
        "> :rotating_light: *No .point set for {title}*\n> Can somebody take point in {room}?",
    ),
    NagCondition.NO_COMMS: (
        "> :rotating_light: *No .comms set!*\n"
        "> Hey <!here>, nobody has grabbed comms yet! Can somebody take it with `.comms`?",
        "> :rotating_light: *No .comms set for {title}*\n> Can somebody take comms in {room}?",
    ),
    NagCondition.NEED_INITIAL_COMM: (
        "> :loudspeaker: *Need initial comm update!*\n"
        "> Hey {mention}, we need a `.summary` of what we know so far for this incident.",
        None,
    ),
    NagCondition.NEED_COMM_UPDATE: (
        "> :loudspeaker: *Need comm update*\n"
        "> Hey {mention}, please provide a comm update with `.update`!",
        None,
    ),
}


class SlackAdapterError(Exception):
    """Base exception for Slack adapter errors."""


class SlackConnectionError(SlackAdapterError):
    """Raised when connection to Slack fails."""


class SendError(SlackAdapterError):
    """Raised when sending a message fails."""


class ReactionError(SlackAdapterError):
    """Raised when adding a reaction fails."""


class RoomError(SlackAdapterError):
    """Raised when creating, joining or leaving a channel fails."""


class SlackAdapter:
    """Slack chat adapter implementing the ChatProvider protocol.

    Example:
        config = SlackConfig(bot_token="xoxb-...", app_token="xapp-...")
        adapter = SlackAdapter(config)

        await adapter.connect()
        async for message in adapter.listen():
            print(f"Received: {message.text}")
        await adapter.disconnect()
    """

    def __init__(self, config: SlackConfig) -> None:
        """Initialize the Slack adapter.

        Args:
            config: Slack-specific configuration.
        """
        self._config = config
        self._connected = False

        self._app = AsyncApp(token=config.bot_token)
        self._client: AsyncWebClient = self._app.client
        self._socket_handler: AsyncSocketModeHandler | None = None

        self._message_queue: asyncio.Queue[ChatMessage] = asyncio.Queue()
        self._disconnect_event = asyncio.Event()

        self._register_handlers()

    def _register_handlers(self) -> None:
        """Register event handlers with the Slack app."""

        @self._app.event("message")
        async def handle_message(
            event: dict[str, Any],
            context: AsyncBoltContext,
        ) -> None:
            await self._process_message_event(event)

    async def _process_message_event(self, event: dict[str, Any]) -> None:
        """Queue a user message; bot messages and edits are ignored.

        Args:
            event: The Slack message event.
        """
        subtype = event.get("subtype")
        if subtype in ("bot_message", "message_changed", "message_deleted"):
            return
        if event.get("bot_id"):
            return

        room = event.get("channel", "")
        message_id = event.get("ts", "")

        try:
            timestamp = datetime.fromtimestamp(float(message_id), tz=UTC).replace(tzinfo=None)
        except (ValueError, TypeError):
            timestamp = utcnow()

        message = ChatMessage(
            room=room,
            message_id=message_id,
            user_id=event.get("user", ""),
            text=event.get("text", ""),
            timestamp=timestamp,
            thread_id=event.get("thread_ts"),
            raw_event=event,
        )

        await self._message_queue.put(message)
        log.debug("message_queued", room=room, message_id=message_id)

    async def connect(self) -> None:
        """Establish connection to Slack using Socket Mode.

        Raises:
            SlackConnectionError: If connection fails.
        """
        if self._connected:
            return

        try:
            self._socket_handler = AsyncSocketModeHandler(
                app=self._app,
                app_token=self._config.app_token,
            )
            await self._socket_handler.connect_async()  # type: ignore[no-untyped-call]

            self._connected = True
            self._disconnect_event.clear()
            log.info("slack_connected")

        except Exception as e:
            log.error("slack_connection_failed", error=str(e))
            raise SlackConnectionError(f"Failed to connect to Slack: {e}") from e

    async def disconnect(self) -> None:
        """Gracefully close the Slack connection."""
        if not self._connected:
            return

        self._disconnect_event.set()

        if self._socket_handler:
            try:
                await self._socket_handler.close_async()  # type: ignore[no-untyped-call]
            except Exception as e:
                log.warning("disconnect_error", error=str(e))

        self._connected = False
        log.info("slack_disconnected")

    async def listen(self) -> AsyncIterator[ChatMessage]:
        """Yield incoming messages from every joined channel.

        Yields:
            ChatMessage: Each incoming message.
        """
        if not self._connected:
            raise SlackAdapterError("Not connected. Call connect() first.")

        while not self._disconnect_event.is_set():
            try:
                message = await asyncio.wait_for(self._message_queue.get(), timeout=1.0)
                yield message
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break

    async def send_message(self, room: str, text: str, thread_id: str | None = None) -> str:
        """Post a message to a channel, optionally in a thread.

        Returns:
            Message ID (ts) of the sent message.

        Raises:
            SendError: If message delivery fails.
        """
        kwargs: dict[str, Any] = {"channel": room, "text": text}
        if thread_id:
            kwargs["thread_ts"] = thread_id

        try:
            result = await self._client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            log.error("send_message_failed", room=room, error=str(e))
            raise SendError(f"Failed to send message: {e}") from e

        message_ts: str = result.get("ts", "")
        log.debug("message_sent", room=room, message_ts=message_ts, thread_id=thread_id)
        return message_ts

    async def reply_to_message(self, room: str, text: str, message_id: str | None = None) -> str:
        return await self.send_message(room, text, thread_id=message_id)

    async def react_to_message(self, room: str, reaction: str, message_id: str | None) -> None:
        """Add a reaction/emoji to a message.

        Raises:
            ReactionError: If adding reaction fails.
        """
        if not message_id:
            return

        try:
            await self._client.reactions_add(channel=room, timestamp=message_id, name=reaction)
        except SlackApiError as e:
            # Ignore "already_reacted" error
            if e.response.get("error") == "already_reacted":
                return
            log.error("add_reaction_failed", room=room, message_id=message_id, error=str(e))
            raise ReactionError(f"Failed to add reaction: {e}") from e

    async def send_error(self, room: str, text: str, message_id: str | None = None) -> None:
        """Mark the message with the error reaction and explain in its thread."""
        await asyncio.gather(
            self.react_to_message(room, self._config.error_reaction, message_id),
            self.reply_to_message(room, f":warning: {text}", message_id),
        )

    async def get_permalink(self, room: str, message_id: str) -> str | None:
        try:
            result = await self._client.chat_getPermalink(channel=room, message_ts=message_id)
        except SlackApiError as e:
            log.warning("get_permalink_failed", room=room, message_id=message_id, error=str(e))
            return None
        permalink: str | None = result.get("permalink")
        return permalink

    async def join_room(self, room: str) -> None:
        try:
            await self._client.conversations_join(channel=room)
        except SlackApiError as e:
            raise RoomError(f"Failed to join {room}: {e}") from e
        log.info("room_joined", room=room)

    async def leave_room(self, room: str) -> None:
        try:
            await self._client.conversations_leave(channel=room)
        except SlackApiError as e:
            raise RoomError(f"Failed to leave {room}: {e}") from e
        log.info("room_left", room=room)

    async def get_joined_rooms(self) -> set[str]:
        """Return the ids of every channel the bot is a member of."""
        rooms: set[str] = set()
        cursor: str | None = None

        while True:
            result = await self._client.users_conversations(
                types="public_channel,private_channel",
                exclude_archived=True,
                limit=200,
                cursor=cursor,
            )
            rooms.update(channel["id"] for channel in result.get("channels", []))

            cursor = (result.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return rooms

    async def create_incident_room(self, incident_id: int) -> str:
        """Create the public channel for an incident.

        The creating bot is a member of the new channel.

        Raises:
            RoomError: If the channel cannot be created.
        """
        name = f"{self._config.room_prefix}{incident_id}"

        try:
            result = await self._client.conversations_create(name=name, is_private=False)
        except SlackApiError as e:
            log.error("create_room_failed", name=name, error=str(e))
            raise RoomError(f"Failed to create channel {name}: {e}") from e

        room: str = result["channel"]["id"]
        log.info("room_created", name=name, room=room, incident_id=incident_id)
        return room

    async def resolve_user(self, user_id: str) -> ChatUser:
        """Look up a user's real name and email.

        Returns:
            The user, with None for anything Slack did not provide
        """
        result = await self._client.users_info(user=user_id)
        user: dict[str, Any] = result.get("user", {})
        profile: dict[str, Any] = user.get("profile", {})

        return ChatUser(
            name=profile.get("real_name") or profile.get("display_name") or user.get("name"),
            email=profile.get("email"),
        )

    async def send_nag(
        self,
        incident: Incident,
        condition: NagCondition,
        main_room: str | None = None,
    ) -> None:
        """Post an escalation reminder to the incident room.

        Missing point or comms is also raised in the main room.
        """
        room_text, main_text = _NAG_TEXTS[condition]
        mention = self.fmt_user(incident.comms) if incident.comms else "<!here>"

        sends = [self.send_message(incident.chat_room_uid, room_text.format(mention=mention))]
        if main_text and main_room:
            sends.append(
                self.send_message(
                    main_room,
                    main_text.format(
                        title=incident.title.upper(),
                        room=self.fmt_room(incident.chat_room_uid),
                    ),
                )
            )

        await asyncio.gather(*sends)
        log.debug("nag_posted", room=incident.chat_room_uid, condition=condition.value)

    def fmt_user(self, user_id: str) -> str:
        # Roles may already hold a formatted mention
        if user_id.startswith("<@"):
            return user_id
        return f"<@{user_id}>"

    def fmt_room(self, room: str) -> str:
        return f"<#{room}>"
