"""Tests for the chat user identity cache."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from breaking_bot.core.user_identity import UserIdentity
from breaking_bot.models.user import ChatUser, UserEntry

T0 = datetime(2024, 2, 16, 18, 0)


@pytest.fixture
def chat():
    chat = AsyncMock()
    chat.resolve_user.return_value = ChatUser(name="Ada Lovelace", email="ada@example.com")
    return chat


@pytest.fixture
def tracker():
    tracker = AsyncMock()
    tracker.resolve_user_id.return_value = "acc-ada"
    return tracker


class TestUserIdentity:
    """Test UserIdentity."""

    async def test_resolves_and_persists(self, db, chat, tracker):
        users = UserIdentity(db, chat, tracker, clock=lambda: T0)

        entry = await users.maybe_resolve_user("U1")

        assert entry == UserEntry("U1", T0, tracker_user_id="acc-ada", name="Ada Lovelace")
        tracker.resolve_user_id.assert_awaited_once_with("ada@example.com", "U1")
        assert (await db.get_user_cache())["U1"].tracker_user_id == "acc-ada"
        assert users.display_name("U1") == "Ada Lovelace"

    async def test_fresh_entry_is_not_refreshed(self, db, chat, tracker):
        now = T0
        users = UserIdentity(db, chat, tracker, freshness=3600, clock=lambda: now)
        await users.maybe_resolve_user("U1")

        now = T0 + timedelta(minutes=59)
        await users.maybe_resolve_user("U1")

        assert chat.resolve_user.await_count == 1

    async def test_stale_entry_keeps_earlier_resolutions(self, db, chat, tracker):
        """Test that a refresh never forgets what an earlier one resolved."""
        now = T0
        users = UserIdentity(db, chat, tracker, freshness=3600, clock=lambda: now)
        await users.maybe_resolve_user("U1")

        now = T0 + timedelta(hours=2)
        tracker.resolve_user_id.side_effect = RuntimeError("jira down")
        entry = await users.maybe_resolve_user("U1")

        assert chat.resolve_user.await_count == 2
        assert entry.tracker_user_id == "acc-ada"
        assert entry.updated_at == now

    async def test_chat_failure_returns_previous(self, db, chat):
        chat.resolve_user.side_effect = RuntimeError("slack down")
        users = UserIdentity(db, chat, clock=lambda: T0)

        assert await users.maybe_resolve_user("U1") is None
        assert len(users) == 0

    async def test_load(self, db, chat):
        await db.upsert_user_entry(UserEntry("U7", T0, name="Grace"))
        users = UserIdentity(db, chat, clock=lambda: T0)

        assert await users.load() == 1
        assert users.get("U7").name == "Grace"
        assert users.display_name("U8") == "U8"
