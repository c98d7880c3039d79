"""Tests for data models."""

from datetime import datetime

from breaking_bot.models.incident import Blocker
from breaking_bot.models.log import COMM_LOG_TYPES, LogEntry, LogType
from breaking_bot.models.user import UserEntry

T0 = datetime(2024, 2, 16, 18, 0)


class TestIncident:
    """Test Incident blocker helpers."""

    def test_cleared_blockers_do_not_block(self, incident_factory):
        incident = incident_factory(
            blockers=[
                Blocker(1, 1, "dba", None, T0, unblocked_at=T0),
                Blocker(2, 1, "vendor", "ticket 123", T0),
            ]
        )

        assert incident.is_blocked
        assert [b.id for b in incident.active_blockers] == [2]

    def test_no_blockers(self, incident_factory):
        incident = incident_factory()

        assert not incident.is_blocked
        assert incident.active_blockers == []


class TestLogEntry:
    """Test LogEntry display."""

    def test_prefixed_types(self):
        entry = LogEntry(1, 1, LogType.COMM_UPDATE, "fix deployed", "U1", T0)
        assert entry.display_text == "Comm update: fix deployed"

    def test_unprefixed_types(self):
        entry = LogEntry(1, 1, LogType.EVENT, "Incident acknowledged", "U1", T0)
        assert entry.display_text == "Incident acknowledged"

    def test_comm_types(self):
        assert COMM_LOG_TYPES == {LogType.COMM_UPDATE, LogType.SUMMARY}


class TestUserEntry:
    """Test UserEntry merging."""

    def test_merged_over_keeps_known_ids(self):
        previous = UserEntry("U1", T0, tracker_user_id="acc-1", name="Ada")
        fresh = UserEntry("U1", datetime(2024, 2, 17), reporter_user_id="wp-1")

        merged = fresh.merged_over(previous)

        assert merged == UserEntry(
            "U1",
            datetime(2024, 2, 17),
            tracker_user_id="acc-1",
            reporter_user_id="wp-1",
            name="Ada",
        )

    def test_merged_over_nothing(self):
        entry = UserEntry("U1", T0)
        assert entry.merged_over(None) is entry
