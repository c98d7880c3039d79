"""Tests for durable storage."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from breaking_bot.models.log import LogType
from breaking_bot.models.user import UserEntry
from breaking_bot.storage.database import Database
from breaking_bot.utils.async_helpers import StorageError

T0 = datetime(2024, 2, 16, 18, 0)


class TestIncidents:
    """Test incident rows."""

    async def test_create_and_find(self, db):
        created = await db.create_incident("Checkout is down", "C1", 2, "U1", T0)

        found = await db.find_incident("C1")

        assert found is not None
        assert found.id == created.id
        assert found.title == "Checkout is down"
        assert found.created_at == T0
        assert found.affected == []

    async def test_find_unknown_room(self, db):
        assert await db.find_incident("CNOPE") is None

    async def test_start_incident_binds_room(self, db):
        create_room = AsyncMock(side_effect=lambda incident_id: f"breaking-{incident_id}")

        incident = await db.start_incident("API errors", 1, "U1", create_room, at=T0)

        create_room.assert_awaited_once_with(incident.id)
        assert incident.chat_room_uid == f"breaking-{incident.id}"
        assert (await db.find_incident(incident.chat_room_uid)) is not None

    async def test_start_incident_rolls_back_when_room_fails(self, db):
        """Test that no incident row survives a failed room creation."""
        create_room = AsyncMock(side_effect=RuntimeError("slack down"))

        with pytest.raises(RuntimeError):
            await db.start_incident("API errors", 1, "U1", create_room, at=T0)

        assert await db.find_incidents_in_progress() == []

    async def test_set_field(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        assert await db.set_incident_field(incident.id, "point", "U2")
        assert (await db.find_incident("C1")).point == "U2"

    async def test_set_field_rejects_unknown_column(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        with pytest.raises(ValueError, match="not editable"):
            await db.set_incident_field(incident.id, "archived_at", T0)

    async def test_set_field_on_missing_incident(self, db):
        assert not await db.set_incident_field(999, "title", "x")

    async def test_set_and_clear_milestones(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        await db.set_incident_milestones(incident.id, mitigated_at=T0, resolved_at=T0)
        await db.set_incident_milestones(incident.id, resolved_at=None)

        found = await db.find_incident("C1")
        assert found.mitigated_at == T0
        assert found.resolved_at is None

    async def test_terminal_times_are_set_once(self, db):
        """Test that archiving or canceling twice is a no-op."""
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        assert await db.archive_incident(incident.id, T0) == T0
        assert await db.archive_incident(incident.id, T0 + timedelta(hours=1)) is None
        assert await db.cancel_incident(incident.id, T0) is None

    async def test_in_progress_excludes_terminal(self, db):
        kept = await db.create_incident("kept", "C1", 2, "U1", T0)
        archived = await db.create_incident("archived", "C2", 2, "U1", T0)
        canceled = await db.create_incident("canceled", "C3", 2, "U1", T0)
        await db.archive_incident(archived.id, T0)
        await db.cancel_incident(canceled.id, T0)

        in_progress = await db.find_incidents_in_progress()

        assert [i.id for i in in_progress] == [kept.id]


class TestCollections:
    """Test affected items, components and blockers."""

    async def test_add_affected_skips_duplicates(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        first = await db.add_affected(incident.id, ["checkout"])
        second = await db.add_affected(incident.id, ["checkout", "login"])

        assert [a.what for a in first] == ["checkout"]
        assert [a.what for a in second] == ["login"]
        found = await db.find_incident("C1")
        assert sorted(a.what for a in found.affected) == ["checkout", "login"]

    async def test_remove_affected(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)
        await db.add_affected(incident.id, ["checkout"])

        assert await db.remove_affected(incident.id, "checkout")
        assert not await db.remove_affected(incident.id, "checkout")

    async def test_components(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)

        added = await db.add_components(incident.id, ["db", "db", "cache"])

        assert [c.which for c in added] == ["db", "cache"]
        assert not await db.remove_component(incident.id, "queue")
        assert await db.remove_component(incident.id, "db")

    async def test_blockers(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)
        first = await db.add_blocker(incident.id, "dba", "needs failover", T0)
        second = await db.add_blocker(incident.id, "vendor", at=T0)

        cleared = await db.unblock_blocker(incident.id, first.id, T0)

        assert cleared is not None
        assert cleared.unblocked_at == T0
        assert await db.unblock_blocker(incident.id, first.id, T0) is None
        remaining = await db.unblock_all_blockers(incident.id, T0)
        assert [b.id for b in remaining] == [second.id]
        assert await db.unblock_all_blockers(incident.id, T0) == []

    async def test_blocker_from_other_incident_is_not_cleared(self, db):
        one = await db.create_incident("one", "C1", 2, "U1", T0)
        two = await db.create_incident("two", "C2", 2, "U1", T0)
        blocker = await db.add_blocker(one.id, "dba", at=T0)

        assert await db.unblock_blocker(two.id, blocker.id, T0) is None


class TestLog:
    """Test the incident log and the queries built on it."""

    async def test_log_is_ordered_oldest_first(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)
        await db.add_log_entry(incident.id, LogType.NOTE, "second", "U1", at=T0 + timedelta(1))
        await db.add_log_entry(incident.id, LogType.NOTE, "first", "U1", at=T0)

        entries = await db.get_log(incident.id)

        assert [e.text for e in entries] == ["first", "second"]
        assert entries[0].type is LogType.NOTE

    async def test_syncs_to_do_returns_full_log_of_touched_incidents(self, db):
        touched = await db.create_incident("touched", "C1", 2, "U1", T0)
        quiet = await db.create_incident("quiet", "C2", 2, "U1", T0)
        await db.add_log_entry(touched.id, LogType.EVENT, "old", "U1", at=T0)
        await db.add_log_entry(touched.id, LogType.EVENT, "new", "U1", at=T0 + timedelta(hours=1))
        await db.add_log_entry(quiet.id, LogType.EVENT, "old", "U1", at=T0)

        syncs = await db.get_syncs_to_do(T0 + timedelta(minutes=30))

        assert list(syncs) == ["C1"]
        assert [e.text for e in syncs["C1"]] == ["old", "new"]

    async def test_most_recent_comm_updates(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)
        await db.add_log_entry(incident.id, LogType.SUMMARY, "s", "U1", at=T0)
        await db.add_log_entry(
            incident.id, LogType.COMM_UPDATE, "u", "U1", at=T0 + timedelta(minutes=5)
        )
        await db.add_log_entry(incident.id, LogType.NOTE, "n", "U1", at=T0 + timedelta(hours=1))

        assert await db.get_most_recent_comm_updates() == {"C1": T0 + timedelta(minutes=5)}
        assert await db.get_last_log_activity() == {"C1": T0 + timedelta(hours=1)}

    async def test_activity_ignores_terminal_incidents(self, db):
        incident = await db.create_incident("t", "C1", 2, "U1", T0)
        await db.add_log_entry(incident.id, LogType.NOTE, "n", "U1", at=T0)
        await db.cancel_incident(incident.id, T0)

        assert await db.get_last_log_activity() == {}


class TestUserCache:
    """Test the persisted user identity cache."""

    async def test_upsert_inserts_then_updates(self, db):
        await db.upsert_user_entry(UserEntry("U1", T0, tracker_user_id="acc-1", name="Ada"))
        await db.upsert_user_entry(UserEntry("U1", T0 + timedelta(hours=1), name="Ada L"))

        cache = await db.get_user_cache()

        assert cache["U1"].name == "Ada L"
        assert cache["U1"].tracker_user_id is None
        assert cache["U1"].updated_at == T0 + timedelta(hours=1)


class TestErrors:
    """Test error wrapping."""

    async def test_driver_errors_become_storage_errors(self):
        """Test that querying a database without a schema raises StorageError."""
        database = Database.from_url("sqlite+aiosqlite:///:memory:")
        try:
            with pytest.raises(StorageError, match="find_incident failed"):
                await database.find_incident("C1")
        finally:
            await database.dispose()

    async def test_ping(self, db):
        assert await db.ping()
