"""Abstract interface for incident report platforms."""

from typing import Protocol

from ..models.incident import Incident
from ..models.log import LogEntry


class ReportPlatform(Protocol):
    """Abstract interface for the platform incident reports are drafted on."""

    name: str

    async def init(self) -> bool:
        """
        Verify connectivity and credentials.

        Returns:
            True if the platform is usable; False is fatal at startup
        """
        ...

    async def draft(self, incident: Incident, log: list[LogEntry], drafted_by: str) -> str:
        """
        Draft an incident report.

        Returns:
            A link to, or the text of, the drafted report
        """
        ...

    async def resolve_user_id(
        self, email: str | None, chat_user_id: str | None = None
    ) -> str | None:
        """Map a chat user to a report platform user id."""
        ...

    async def aclose(self) -> None:
        """Release HTTP resources."""
        ...
