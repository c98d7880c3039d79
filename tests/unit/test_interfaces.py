"""Tests for protocol interfaces."""

import inspect

import pytest

from breaking_bot.adapters.chat.slack import SlackAdapter
from breaking_bot.adapters.reporter.wpcom import WpcomAdapter
from breaking_bot.adapters.tracker.jira import JiraAdapter
from breaking_bot.interfaces import ChatProvider, IssueTracker, ReportPlatform


def protocol_members(protocol: type) -> dict[str, object]:
    """Return the public methods a protocol declares."""
    return {
        name: member
        for name, member in vars(protocol).items()
        if not name.startswith("_") and callable(member)
    }


IMPLEMENTATIONS = [
    (ChatProvider, SlackAdapter),
    (IssueTracker, JiraAdapter),
    (ReportPlatform, WpcomAdapter),
]


class TestProtocolCompliance:
    """Test that each adapter implements its protocol."""

    @pytest.mark.parametrize("protocol,adapter", IMPLEMENTATIONS)
    def test_adapter_has_every_method(self, protocol, adapter):
        missing = [name for name in protocol_members(protocol) if not hasattr(adapter, name)]
        assert missing == []

    @pytest.mark.parametrize("protocol,adapter", IMPLEMENTATIONS)
    def test_async_methods_match(self, protocol, adapter):
        """Test that coroutine methods stay coroutines in the adapter."""
        for name, member in protocol_members(protocol).items():
            implemented = getattr(adapter, name)
            assert inspect.iscoroutinefunction(implemented) == inspect.iscoroutinefunction(
                member
            ), name

    @pytest.mark.parametrize("protocol,adapter", IMPLEMENTATIONS)
    def test_parameters_match(self, protocol, adapter):
        for name, member in protocol_members(protocol).items():
            expected = list(inspect.signature(member).parameters)
            actual = list(inspect.signature(getattr(adapter, name)).parameters)
            assert actual == expected, name

    def test_listen_is_async_iterator(self):
        assert inspect.isasyncgenfunction(SlackAdapter.listen)
