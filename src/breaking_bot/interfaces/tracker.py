"""Abstract interface for issue tracker integrations."""

from typing import Protocol

from ..models.incident import Incident
from ..models.log import LogEntry


class IssueTracker(Protocol):
    """Abstract interface for issue tracker integrations.

    One implementation is selected from configuration at startup and held
    for the life of the process.
    """

    name: str

    async def init(self) -> bool:
        """
        Verify connectivity and credentials.

        Returns:
            True if the tracker is usable; False is fatal at startup
        """
        ...

    async def create_issue(self, incident: Incident) -> str:
        """
        Create the tracking issue for a new incident.

        Returns:
            The tracker's identifier for the issue
        """
        ...

    async def sync(self, incident: Incident, state: str, log: list[LogEntry]) -> None:
        """
        Push the incident's current data, state and log to its tracking issue.

        Raises:
            TrackerError: If the tracker rejects the update
        """
        ...

    async def sync_comm_update(self, incident: Incident, entry: LogEntry) -> None:
        """Add a comm update to the tracking issue as a comment."""
        ...

    async def sync_components(self, incident: Incident) -> None:
        """Replace the tracking issue's components with the incident's."""
        ...

    async def new_action_item(
        self,
        incident: Incident,
        text: str,
        chat_user_id: str | None = None,
        context_url: str | None = None,
    ) -> tuple[str, str] | tuple[None, None]:
        """
        Create an action item under the incident's tracking issue.

        Returns:
            (item id, item url), or (None, None) when the incident has no issue
        """
        ...

    async def valid_component_names(self, names: list[str]) -> list[str]:
        """Return the subset of ``names`` the tracker knows as components."""
        ...

    async def resolve_user_id(
        self, email: str | None, chat_user_id: str | None = None
    ) -> str | None:
        """Map a chat user to a tracker user id."""
        ...

    def issue_url(self, tracker_uid: str) -> str:
        """Return the browser URL of an issue."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...
