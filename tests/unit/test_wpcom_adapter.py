"""Tests for the WordPress.com report adapter."""

from __future__ import annotations

from datetime import datetime
from urllib.parse import parse_qs

import httpx
import pytest

from breaking_bot.adapters.reporter.wpcom import WpcomAdapter, render_report
from breaking_bot.config.schema import WpcomConfig
from breaking_bot.models.incident import Affected
from breaking_bot.models.log import LogEntry, LogType
from breaking_bot.utils.async_helpers import ReporterError

T0 = datetime(2024, 2, 16, 18, 0)


@pytest.fixture
def wpcom_config() -> WpcomConfig:
    """Create a configured WordPress.com site."""
    return WpcomConfig(site="incidents.example.com", api_token="token")


class TestRenderReport:
    """Test report rendering."""

    def test_minimal_report(self, incident_factory):
        text = render_report(incident_factory(), [], "Ada Lovelace")

        assert text.startswith("Incident report: Checkout is down\nDrafted by Ada Lovelace")
        assert "No summary was recorded." in text
        assert "- Genesis: unknown" in text
        assert "Timeline" not in text

    def test_full_report(self, incident_factory):
        incident = incident_factory(summary="db failover", affected=[Affected(1, "checkout")])
        entries = [
            LogEntry(1, 1, LogType.CONTRIBUTING_FACTOR, "stale replica", "U1", T0),
            LogEntry(2, 1, LogType.ACTION_ITEM, "Add alert", "U1", T0, "https://jira/AI-1"),
            LogEntry(3, 1, LogType.ACTION_ITEM, "Write runbook", "U1", T0),
        ]

        text = render_report(incident, entries, "Ada Lovelace")

        assert "db failover" in text
        assert "Affected\n- checkout" in text
        assert "Contributing factors\n- stale replica" in text
        assert "- Add alert (https://jira/AI-1)" in text
        assert "- Write runbook\n" in text
        assert "Action item: Write runbook" in text


class TestWpcomAdapter:
    """Test the adapter against a mocked REST API."""

    def test_unconfigured(self):
        assert WpcomAdapter(WpcomConfig()).is_configured is False

    async def test_init_without_site(self):
        adapter = WpcomAdapter(WpcomConfig(api_token="token"))
        assert await adapter.init() is False

    async def test_init(self, wpcom_config):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"name": "Incidents"})

        adapter = WpcomAdapter(wpcom_config, transport=httpx.MockTransport(handler))

        assert await adapter.init() is True
        assert requests[0].url.path == "/rest/v1.1/sites/incidents.example.com"
        assert requests[0].headers["Authorization"] == "Bearer token"

    async def test_draft_creates_unpublished_post(self, wpcom_config, incident_factory):
        posted: list[dict[str, list[str]]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"URL": "https://incidents.example.com/?p=12"})

        adapter = WpcomAdapter(wpcom_config, transport=httpx.MockTransport(handler))

        url = await adapter.draft(incident_factory(), [], "Ada Lovelace")

        assert url == "https://incidents.example.com/?p=12"
        assert posted[0]["status"] == ["draft"]
        assert posted[0]["title"] == ["Incident report: Checkout is down"]

    async def test_draft_unconfigured(self, incident_factory):
        adapter = WpcomAdapter(WpcomConfig())

        with pytest.raises(ReporterError, match="not configured"):
            await adapter.draft(incident_factory(), [], "Ada Lovelace")

    async def test_draft_rejected(self, wpcom_config, incident_factory):
        adapter = WpcomAdapter(
            wpcom_config,
            transport=httpx.MockTransport(lambda request: httpx.Response(403)),
        )

        with pytest.raises(ReporterError, match="returned 403"):
            await adapter.draft(incident_factory(), [], "Ada Lovelace")

    async def test_no_user_lookup(self, wpcom_config):
        assert await WpcomAdapter(wpcom_config).resolve_user_id("ada@example.com") is None
