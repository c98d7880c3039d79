"""Data models for incidents and their associated collections."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Blocker:
    """Something (or someone) an incident is waiting on."""

    id: int
    incident_id: int
    whomst: str
    reason: str | None
    created_at: datetime
    unblocked_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Return True until the blocker has been cleared."""
        return self.unblocked_at is None


@dataclass(frozen=True)
class Affected:
    """A customer-visible thing affected by an incident."""

    incident_id: int
    what: str


@dataclass(frozen=True)
class Component:
    """An internal component implicated in an incident."""

    incident_id: int
    which: str


@dataclass
class Incident:
    """A breaking incident as held in the live registry.

    Fields are mutated in place by command handlers after the matching
    durable write has succeeded.
    """

    id: int
    chat_room_uid: str
    title: str
    priority: int
    created_by: str
    created_at: datetime
    updated_at: datetime
    tracker_uid: str | None = None
    summary: str | None = None

    # Roles
    point: str | None = None
    comms: str | None = None
    triage: str | None = None
    eng_lead: str | None = None
    assigned: str | None = None

    # Milestones, in lifecycle order
    genesis_at: datetime | None = None
    detected_at: datetime | None = None
    acknowledged_at: datetime | None = None
    mitigated_at: datetime | None = None
    resolved_at: datetime | None = None
    ready_for_review_at: datetime | None = None
    completed_at: datetime | None = None
    archived_at: datetime | None = None
    canceled_at: datetime | None = None

    affected: list[Affected] = field(default_factory=list)
    components: list[Component] = field(default_factory=list)
    blockers: list[Blocker] = field(default_factory=list)

    @property
    def active_blockers(self) -> list[Blocker]:
        """Return blockers that have not been cleared."""
        return [b for b in self.blockers if b.is_active]

    @property
    def is_blocked(self) -> bool:
        """Return True if at least one blocker is active."""
        return any(b.is_active for b in self.blockers)
