"""WordPress.com report platform adapter.

Incident reports are drafted as unpublished posts on a configured site.
Until both a site and an API token are configured the platform reports
itself unusable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from ...config.schema import RetryConfig, WpcomConfig
from ...core.date import friendly_short
from ...models.log import LogType
from ...utils.async_helpers import ReporterError, create_retry

if TYPE_CHECKING:
    from ...models.incident import Incident
    from ...models.log import LogEntry

log = structlog.get_logger()


def render_report(incident: Incident, entries: list[LogEntry], drafted_by: str) -> str:
    """Render a plain-text incident report."""
    lines = [
        f"Incident report: {incident.title}",
        f"Drafted by {drafted_by}",
        "",
        "Summary",
        incident.summary or "No summary was recorded.",
        "",
        "Key times",
    ]
    for label, when in (
        ("Genesis", incident.genesis_at),
        ("Detected", incident.detected_at),
        ("Acknowledged", incident.acknowledged_at),
        ("Mitigated", incident.mitigated_at),
        ("Resolved", incident.resolved_at),
    ):
        lines.append(f"- {label}: {friendly_short(when) if when else 'unknown'}")

    if incident.affected:
        lines += ["", "Affected"] + [f"- {a.what}" for a in incident.affected]
    if incident.components:
        lines += ["", "Components"] + [f"- {c.which}" for c in incident.components]

    factors = [e.text for e in entries if e.type is LogType.CONTRIBUTING_FACTOR]
    if factors:
        lines += ["", "Contributing factors"] + [f"- {text}" for text in factors]

    action_items = [e for e in entries if e.type is LogType.ACTION_ITEM]
    if action_items:
        lines += ["", "Action items"]
        lines += [
            f"- {e.text} ({e.context_url})" if e.context_url else f"- {e.text}"
            for e in action_items
        ]

    if entries:
        lines += ["", "Timeline"]
        lines += [f"- {friendly_short(e.created_at)} {e.display_text}" for e in entries]

    return "\n".join(lines)


class WpcomAdapter:
    """WordPress.com adapter implementing the ReportPlatform protocol."""

    name = "WordPress.com"

    def __init__(
        self,
        config: WpcomConfig,
        retry: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        headers = {"Accept": "application/json"}
        if config.api_token:
            headers["Authorization"] = f"Bearer {config.api_token}"

        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

        retry = retry or RetryConfig()
        self._send = create_retry(
            max_attempts=retry.max_attempts,
            min_wait=retry.initial_delay,
            max_wait=retry.max_delay,
        )(self._client.request)

    @property
    def is_configured(self) -> bool:
        return bool(self._config.site and self._config.api_token)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ReporterError(f"WordPress.com {method} {path} failed: {e}") from e

        if response.is_error:
            raise ReporterError(
                f"WordPress.com {method} {path} returned {response.status_code}"
            )
        return response.json()

    async def init(self) -> bool:
        """Check that the configured site is reachable with the token."""
        if not self.is_configured:
            log.error("wpcom_not_configured")
            return False

        try:
            site = await self._request("GET", f"/rest/v1.1/sites/{self._config.site}")
        except ReporterError as e:
            log.error("wpcom_init_failed", site=self._config.site, error=str(e))
            return False

        log.info("wpcom_connected", site=self._config.site, name=site.get("name"))
        return True

    async def draft(self, incident: Incident, log: list[LogEntry], drafted_by: str) -> str:
        """Create a draft post holding the report.

        Returns:
            URL of the draft post

        Raises:
            ReporterError: If the post cannot be created
        """
        if not self.is_configured:
            raise ReporterError("WordPress.com is not configured")

        post = await self._request(
            "POST",
            f"/rest/v1.1/sites/{self._config.site}/posts/new",
            data={
                "title": f"Incident report: {incident.title}",
                "content": render_report(incident, log, drafted_by),
                "status": "draft",
            },
        )
        url: str = post.get("URL") or post.get("short_URL") or ""
        return url

    async def resolve_user_id(
        self, email: str | None, chat_user_id: str | None = None
    ) -> str | None:
        """WordPress.com offers no lookup by email; reports credit chat names."""
        return None

    async def aclose(self) -> None:
        await self._client.aclose()
