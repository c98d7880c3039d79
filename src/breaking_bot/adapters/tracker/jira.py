"""Jira issue tracker adapter using the REST API over httpx.

Each incident gets a tracking epic. Incident fields, the rendered log and
the lifecycle state are pushed to the epic on every sync; action items are
created as child tasks in a separate project.

Transient network failures are retried with exponential backoff. Any
response Jira rejects is raised as a TrackerError.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from cachetools import TTLCache

from ...config.schema import JiraConfig, PrioritiesConfig, RetryConfig
from ...core.date import friendly_short
from ...core.fsm import is_incident_active
from ...core.priority import PriorityTable
from ...models.log import LogType
from ...utils.async_helpers import TrackerError, create_retry

if TYPE_CHECKING:
    from ...models.incident import Incident
    from ...models.log import LogEntry

log = structlog.get_logger()

# Jira caps summaries of action items
ACTION_ITEM_SUMMARY_LIMIT = 155

_CHAT_MENTION = re.compile(r"<@([A-Z0-9]+)>")


def _jira_time(when: datetime | None) -> str | None:
    if when is None:
        return None
    # Stored times are naive UTC
    return when.strftime("%Y-%m-%dT%H:%M:%S.000+0000")


def _normalize_user_id(user: str) -> str:
    match = _CHAT_MENTION.fullmatch(user.strip())
    return match.group(1) if match else user.strip()


class JiraAdapter:
    """Jira adapter implementing the IssueTracker protocol.

    Example:
        adapter = JiraAdapter(config)
        if await adapter.init():
            key = await adapter.create_issue(incident)
    """

    name = "jira"

    def __init__(
        self,
        config: JiraConfig,
        retry: RetryConfig | None = None,
        priorities: PrioritiesConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Jira adapter.

        Args:
            config: Jira-specific configuration.
            retry: Retry settings for transient failures.
            priorities: Priority table used to name priorities in Jira.
            transport: Optional httpx transport, used by tests.
        """
        self._config = config
        self._priorities = PriorityTable(priorities or PrioritiesConfig())
        self._client = httpx.AsyncClient(
            base_url=f"https://{config.host}",
            auth=(config.email, config.api_token),
            headers={"Accept": "application/json"},
            timeout=config.timeout,
            transport=transport,
        )

        retry = retry or RetryConfig()
        self._send = create_retry(
            max_attempts=retry.max_attempts,
            min_wait=retry.initial_delay,
            max_wait=retry.max_delay,
        )(self._client.request)

        self._account_id: str | None = None
        self._components: TTLCache[str, list[dict[str, Any]]] = TTLCache(
            maxsize=16, ttl=config.component_cache_ttl
        )
        # chat user id -> Jira account id
        self._user_ids: dict[str, str] = {}
        # issue key -> last state a transition was sent for
        self._issue_states: dict[str, str] = {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request and decode its JSON body.

        Raises:
            TrackerError: If Jira cannot be reached or rejects the request
        """
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TrackerError(f"Jira {method} {path} failed: {e}") from e

        if response.is_error:
            raise TrackerError(
                f"Jira {method} {path} returned {response.status_code}: {response.text[:200]}"
            )

        return response.json() if response.content else None

    async def init(self) -> bool:
        """Check credentials by fetching the bot's own account."""
        try:
            me = await self._request("GET", "/rest/api/3/myself")
        except TrackerError as e:
            log.error("jira_init_failed", host=self._config.host, error=str(e))
            return False

        self._account_id = me.get("accountId")
        log.info(
            "jira_connected",
            host=self._config.host,
            account_id=self._account_id,
            display_name=me.get("displayName"),
        )
        return True

    async def create_issue(self, incident: Incident) -> str:
        fields_config = self._config.fields
        fields: dict[str, Any] = {
            "project": {"key": self._config.tracking_project_key},
            "issuetype": {"name": "Epic"},
            "summary": incident.title,
            "labels": self._config.tracking_labels,
            "description": self._render_description(incident, []),
            fields_config.epic_name: incident.title.title(),
            fields_config.breaking_priority: {"value": self._priorities.name(incident.priority)},
            fields_config.chat_room_uid: incident.chat_room_uid,
        }
        if self._account_id:
            fields["assignee"] = {"id": self._account_id}

        created = await self._request("POST", "/rest/api/2/issue", json={"fields": fields})
        key: str = created["key"]

        log.info("jira_issue_created", key=key, incident_id=incident.id)
        return key

    async def sync(self, incident: Incident, state: str, log: list[LogEntry]) -> None:
        """Edit the epic's fields and move it through the workflow if the state changed."""
        key = incident.tracker_uid
        if not key:
            _warn_missing_key(incident)
            return

        fields_config = self._config.fields
        fields: dict[str, Any] = {
            "summary": incident.title,
            "description": self._render_description(incident, log),
            fields_config.genesis: _jira_time(incident.genesis_at),
            fields_config.detected: _jira_time(incident.detected_at),
            fields_config.acknowledged: _jira_time(incident.acknowledged_at),
            fields_config.mitigated: _jira_time(incident.mitigated_at),
            fields_config.resolved: _jira_time(incident.resolved_at),
            fields_config.breaking_priority: {"value": self._priorities.name(incident.priority)},
        }
        for field_id, role in (
            (fields_config.point_person, incident.point),
            (fields_config.comms_person, incident.comms),
        ):
            account_id = self._cached_account(role)
            if account_id:
                fields[field_id] = {"accountId": account_id}

        await self._request("PUT", f"/rest/api/2/issue/{key}", json={"fields": fields})

        if self._issue_states.get(key) != state:
            transition_id = self._config.transitions.get(state)
            if transition_id is not None:
                await self._request(
                    "POST",
                    f"/rest/api/3/issue/{key}/transitions",
                    json={"transition": {"id": str(transition_id)}},
                )
            self._issue_states[key] = state

    async def sync_comm_update(self, incident: Incident, entry: LogEntry) -> None:
        key = incident.tracker_uid
        if not key:
            _warn_missing_key(incident)
            return

        account_id = self._cached_account(entry.created_by)
        author = f" from {self.fmt_user(account_id)}" if account_id else ""
        comment = f"Comm update{author}:\n\n{self._resolve_mentions(entry.text)}"

        await self._request("POST", f"/rest/api/2/issue/{key}/comment", json={"body": comment})

    async def sync_components(self, incident: Incident) -> None:
        """Replace the epic's components with those of the incident Jira knows."""
        key = incident.tracker_uid
        if not key:
            _warn_missing_key(incident)
            return

        wanted = {c.which.lower() for c in incident.components}
        matching = [
            component
            for component in await self._project_components()
            if component.get("name", "").lower() in wanted
        ]
        if len(matching) != len(wanted):
            log.warning(
                "jira_components_unmatched",
                key=key,
                unmatched=len(wanted) - len(matching),
            )

        await self._request(
            "PUT",
            f"/rest/api/3/issue/{key}",
            json={"fields": {"components": [{"id": c["id"]} for c in matching]}},
        )

    async def valid_component_names(self, names: list[str]) -> list[str]:
        known = {c.get("name", "").lower() for c in await self._project_components()}
        return [name for name in names if name.lower() in known]

    async def new_action_item(
        self,
        incident: Incident,
        text: str,
        chat_user_id: str | None = None,
        context_url: str | None = None,
    ) -> tuple[str, str] | tuple[None, None]:
        """Create a child task of the incident epic.

        ``text`` is ``summary => description``; without a description the
        summary is used for both.

        Returns:
            (key, url) of the new task, or (None, None) if the incident has no epic
        """
        if not incident.tracker_uid:
            return None, None

        summary, _, description = text.partition("=>")
        summary = summary.strip()[:ACTION_ITEM_SUMMARY_LIMIT]
        description = description.strip() or summary

        account_id = self._cached_account(chat_user_id)
        lines = [description, ""]
        lines.append(f"Reported by: {self.fmt_user(account_id) if account_id else chat_user_id}")
        if context_url:
            lines.append(f"Context: {context_url}")
        lines.append(f"Incident: {incident.tracker_uid}")

        created = await self._request(
            "POST",
            "/rest/api/2/issue",
            json={
                "fields": {
                    "project": {"key": self._config.action_item_project_key},
                    "issuetype": {"name": "Task"},
                    "summary": summary,
                    "labels": self._config.action_item_labels,
                    "description": "\n".join(lines),
                    "parent": {"key": incident.tracker_uid},
                }
            },
        )
        key: str = created["key"]

        log.info("jira_action_item_created", key=key, incident_id=incident.id)
        return key, self.issue_url(key)

    async def resolve_user_id(
        self, email: str | None, chat_user_id: str | None = None
    ) -> str | None:
        """Find the Jira account for a chat user, by cache first and then by email."""
        cached = self._cached_account(chat_user_id)
        if cached:
            return cached
        if not email:
            return None

        users = await self._request(
            "GET", "/rest/api/3/user/search", params={"query": email, "maxResults": 1}
        )
        if not users or not users[0].get("accountId"):
            return None

        account_id: str = users[0]["accountId"]
        if chat_user_id:
            self._user_ids[_normalize_user_id(chat_user_id)] = account_id
        return account_id

    def issue_url(self, tracker_uid: str) -> str:
        return f"https://{self._config.host}/browse/{tracker_uid}"

    def fmt_user(self, account_id: str) -> str:
        return f"[~accountid:{account_id}]"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _project_components(self) -> list[dict[str, Any]]:
        project = self._config.tracking_project_key
        if project not in self._components:
            self._components[project] = await self._request(
                "GET", f"/rest/api/3/project/{project}/components"
            )
        return self._components[project]

    def _cached_account(self, user: str | None) -> str | None:
        if not user:
            return None
        return self._user_ids.get(_normalize_user_id(user))

    def _resolve_mentions(self, text: str) -> str:
        def replace(match: re.Match[str]) -> str:
            account_id = self._user_ids.get(match.group(1))
            return self.fmt_user(account_id) if account_id else match.group(0)

        return _CHAT_MENTION.sub(replace, text)

    def _fmt_author(self, user: str) -> str:
        account_id = self._cached_account(user)
        return self.fmt_user(account_id) if account_id else user

    def _render_description(self, incident: Incident, entries: list[LogEntry]) -> str:
        """Render the epic description in Jira wiki markup."""
        lines = [f"h2. {incident.title}"]
        if is_incident_active(incident):
            lines.append("{color:red}*This incident is ongoing.*{color}")

        lines += [
            "",
            f"*Started by:* {self._fmt_author(incident.created_by)}"
            f" at {friendly_short(incident.created_at)}",
            f"*Chat room:* {incident.chat_room_uid}",
        ]
        for label, when in (
            ("Genesis", incident.genesis_at),
            ("Detected", incident.detected_at),
            ("Resolved", incident.resolved_at),
        ):
            if when:
                lines.append(f"*{label}:* {friendly_short(when)}")

        lines += ["", "h3. Summary", incident.summary or "_No summary yet_"]

        if incident.affected:
            lines += ["", "h3. Affected"] + [f"* {a.what}" for a in incident.affected]
        if incident.active_blockers:
            lines += ["", "h3. Blocked on"] + [f"* {b.whomst}" for b in incident.active_blockers]

        factors = [e for e in entries if e.type is LogType.CONTRIBUTING_FACTOR]
        if factors:
            lines += ["", "h3. Contributing factors"]
            lines += [f"* {self._resolve_mentions(e.text)}" for e in factors]

        if entries:
            lines += ["", "h3. Timeline", "||When||Who||What||"]
            for entry in entries:
                text = self._resolve_mentions(entry.display_text).replace("|", "\\|")
                lines.append(
                    f"|{friendly_short(entry.created_at)}"
                    f"|{self._fmt_author(entry.created_by)}|{text}|"
                )

        return "\n".join(lines)


def _warn_missing_key(incident: Incident) -> None:
    log.warning("jira_issue_key_missing", incident_id=incident.id)
