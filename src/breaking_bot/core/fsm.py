"""Incident lifecycle state machine.

The primary lifecycle runs Started -> Acknowledged -> Mitigated -> Resolved
-> Ready For Review -> Completed -> Archived, with Canceled reachable from
any non-terminal state. Blocked is a side-state layered over the primary
state: it is derived from the incident's active blockers and never replaces
the primary state, so clearing the last blocker always reveals whatever
primary state the incident is in at that moment.

The machine validates transitions and tracks the primary state only. It
never writes timestamps or persists anything; handlers write to storage,
reflect the result into ``data()`` and then call ``transition()``.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from breaking_bot.models.incident import Blocker, Incident

if TYPE_CHECKING:
    from breaking_bot.core.priority import PriorityTable


class IncidentState(StrEnum):
    """Lifecycle states, including the Blocked side-state."""

    STARTED = "Started"
    ACKNOWLEDGED = "Acknowledged"
    MITIGATED = "Mitigated"
    BLOCKED = "Blocked"
    RESOLVED = "Resolved"
    READY_FOR_REVIEW = "Ready For Review"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"
    CANCELED = "Canceled"


class Action(StrEnum):
    """Named transitions."""

    ACK = "ack"
    MITIGATE = "mitigate"
    BLOCK = "block"
    RESOLVE = "resolve"
    RFR = "rfr"
    COMPLETE = "complete"
    ARCHIVE = "archive"
    CANCEL = "cancel"
    UNBLOCK = "unblock"
    UNMITIGATE = "unmitigate"
    UNRESOLVE = "unresolve"
    RESTART = "restart"


TERMINAL_STATES = frozenset({IncidentState.ARCHIVED, IncidentState.CANCELED})

# Primary states in which blockers put the incident into the Blocked side-state
BLOCKABLE_STATES = frozenset(
    {IncidentState.STARTED, IncidentState.ACKNOWLEDGED, IncidentState.MITIGATED}
)

_CANCELABLE_STATES = frozenset(
    {
        IncidentState.STARTED,
        IncidentState.ACKNOWLEDGED,
        IncidentState.MITIGATED,
        IncidentState.RESOLVED,
        IncidentState.READY_FOR_REVIEW,
        IncidentState.COMPLETED,
    }
)

_TRANSITIONS: dict[Action, dict[IncidentState, IncidentState]] = {
    Action.ACK: {IncidentState.STARTED: IncidentState.ACKNOWLEDGED},
    Action.MITIGATE: {
        IncidentState.STARTED: IncidentState.MITIGATED,
        IncidentState.ACKNOWLEDGED: IncidentState.MITIGATED,
    },
    Action.RESOLVE: {
        IncidentState.STARTED: IncidentState.RESOLVED,
        IncidentState.ACKNOWLEDGED: IncidentState.RESOLVED,
        IncidentState.MITIGATED: IncidentState.RESOLVED,
    },
    Action.RFR: {IncidentState.RESOLVED: IncidentState.READY_FOR_REVIEW},
    Action.COMPLETE: {
        IncidentState.RESOLVED: IncidentState.COMPLETED,
        IncidentState.READY_FOR_REVIEW: IncidentState.COMPLETED,
    },
    Action.ARCHIVE: {
        IncidentState.COMPLETED: IncidentState.ARCHIVED,
        IncidentState.READY_FOR_REVIEW: IncidentState.ARCHIVED,
    },
    Action.CANCEL: {state: IncidentState.CANCELED for state in _CANCELABLE_STATES},
    Action.UNMITIGATE: {IncidentState.MITIGATED: IncidentState.ACKNOWLEDGED},
    Action.UNRESOLVE: {IncidentState.RESOLVED: IncidentState.MITIGATED},
    # Restart clears mitigation and resolution; acknowledgement always survives it
    Action.RESTART: {
        IncidentState.MITIGATED: IncidentState.ACKNOWLEDGED,
        IncidentState.RESOLVED: IncidentState.ACKNOWLEDGED,
    },
}


class InvalidTransitionError(Exception):
    """Raised when an action is not reachable from the current state.

    Attributes:
        action: The requested action
        state: The state the incident was in
        reasons: Human readable reasons the transition was refused
    """

    def __init__(
        self,
        action: Action,
        state: IncidentState,
        reasons: list[str] | None = None,
    ) -> None:
        self.action = action
        self.state = state
        self.reasons = reasons or []
        detail = f": {'; '.join(self.reasons)}" if self.reasons else ""
        super().__init__(f"Cannot {action.value} from {state.value}{detail}")


def persisted_state(incident: Incident) -> IncidentState:
    """Derive the primary state from an incident's milestone timestamps."""
    if incident.archived_at:
        return IncidentState.ARCHIVED
    if incident.canceled_at:
        return IncidentState.CANCELED
    if incident.completed_at:
        return IncidentState.COMPLETED
    if incident.ready_for_review_at:
        return IncidentState.READY_FOR_REVIEW
    if incident.resolved_at:
        return IncidentState.RESOLVED
    if incident.mitigated_at:
        return IncidentState.MITIGATED
    if incident.acknowledged_at:
        return IncidentState.ACKNOWLEDGED
    return IncidentState.STARTED


def is_incident_active(incident: Incident) -> bool:
    """Return True unless the incident has been resolved."""
    return incident.resolved_at is None


def is_incident_updatable(incident: Incident) -> bool:
    """Return True unless the incident has been archived or canceled."""
    return incident.archived_at is None and incident.canceled_at is None


def rfr_analysis(incident: Incident) -> list[str]:
    """List what is missing or inconsistent before an incident can go to review."""
    analysis: list[str] = []

    if not incident.assigned:
        analysis.append("`.assign` must be set")
    if not incident.summary:
        analysis.append("`.summary` must be set")
    if not incident.genesis_at:
        analysis.append("`.genesis <when>` must be set")
    if not incident.detected_at:
        analysis.append("`.detected <when>` must be set")
    if not incident.acknowledged_at:
        analysis.append("`.acknowledged <when>` must be set")
    if not incident.mitigated_at:
        analysis.append("`.mitigated <when>` must be set")
    if not incident.resolved_at:
        analysis.append("`.resolved <when>` must be set")
    if not incident.components:
        analysis.append("At least one `.component` must be set")

    if _is_after(incident.genesis_at, incident.detected_at):
        analysis.append(
            "Incident genesis must be before detection, "
            "use `.genesis` and/or `.detected` to correct"
        )
    if _is_after(incident.genesis_at, incident.mitigated_at):
        analysis.append(
            "Incident genesis must be before mitigation, "
            "use `.genesis` and/or `.mitigate` to correct"
        )
    if _is_after(incident.detected_at, incident.acknowledged_at):
        analysis.append(
            "Incident detection must be before acknowledgement, use `.detected` to correct"
        )
    if _is_after(incident.mitigated_at, incident.resolved_at):
        analysis.append("Incident must be mitigated before it was resolved")

    return analysis


def _is_after(left: datetime | None, right: datetime | None) -> bool:
    return left is not None and right is not None and left > right


class IncidentMachine:
    """State machine wrapping one incident.

    Example:
        machine = IncidentMachine(incident, priorities)
        incident.resolved_at = await db.set_incident_milestones(...)
        machine.transition(Action.RESOLVE)
    """

    def __init__(self, incident: Incident, priorities: PriorityTable) -> None:
        self._incident = incident
        self._priorities = priorities
        self._primary = persisted_state(incident)

    def data(self) -> Incident:
        """Return the live, mutable incident."""
        return self._incident

    @property
    def primary_state(self) -> IncidentState:
        """Return the lifecycle state, ignoring the Blocked side-state."""
        return self._primary

    def state(self) -> IncidentState:
        """Return Blocked while blocked, otherwise the current primary state."""
        if self.is_blocked():
            return IncidentState.BLOCKED
        return self._primary

    def is_blocked(self) -> bool:
        return self._primary in BLOCKABLE_STATES and self._incident.is_blocked

    def can(self, action: Action) -> bool:
        try:
            self.check(action)
        except InvalidTransitionError:
            return False
        return True

    def reachable(self, action: Action) -> IncidentState:
        """Return the state ``action`` leads to, ignoring its guard.

        Raises:
            InvalidTransitionError: If no such transition leaves the current state
        """
        target = _TRANSITIONS.get(action, {}).get(self._primary)
        if target is None:
            raise InvalidTransitionError(action, self.state())
        return target

    def check(self, action: Action) -> IncidentState:
        """Validate an action without changing state.

        Args:
            action: Action to validate

        Returns:
            The primary state the action would lead to

        Raises:
            InvalidTransitionError: If the action is not allowed
        """
        target = self.reachable(action)
        reasons = self._guard(action, target)
        if reasons:
            raise InvalidTransitionError(action, self.state(), reasons)

        return target

    def transition(self, action: Action) -> IncidentState:
        """Move to the state ``action`` leads to.

        Returns:
            The new primary state

        Raises:
            InvalidTransitionError: If the action is not allowed; state is unchanged
        """
        self._primary = self.check(action)
        return self._primary

    def block(self, blocker: Blocker) -> bool:
        """Attach an active blocker, entering the Blocked side-state.

        Blocking an already blocked incident joins the existing side-state.

        Returns:
            True if the incident was not blocked before this call

        Raises:
            InvalidTransitionError: If the primary state cannot be blocked
        """
        if self._primary not in BLOCKABLE_STATES:
            raise InvalidTransitionError(Action.BLOCK, self._primary)

        was_blocked = self.is_blocked()
        self._incident.blockers.append(blocker)
        return not was_blocked

    def unblock(self, blocker_id: int, at: datetime) -> bool:
        """Clear one blocker.

        Returns:
            True if this cleared the last active blocker
        """
        was_blocked = self._incident.is_blocked
        for blocker in self._incident.blockers:
            if blocker.id == blocker_id and blocker.is_active:
                blocker.unblocked_at = at
        return was_blocked and not self._incident.is_blocked

    def unblock_all(self, at: datetime) -> bool:
        """Clear every active blocker.

        Returns:
            True if the incident had any active blocker
        """
        was_blocked = self._incident.is_blocked
        for blocker in self._incident.active_blockers:
            blocker.unblocked_at = at
        return was_blocked

    def _guard(self, action: Action, target: IncidentState) -> list[str]:
        incident = self._incident

        if action is Action.ACK:
            if incident.acknowledged_at or (incident.point and incident.comms):
                return []
            return ["acknowledging requires `.point` and `.comms`, or an acknowledged time"]

        if target is IncidentState.READY_FOR_REVIEW:
            return rfr_analysis(incident)

        if (
            action is Action.COMPLETE
            and self._primary is IncidentState.RESOLVED
            and self._priorities.is_review_required(incident.priority)
        ):
            name = self._priorities.name(incident.priority)
            return [f"{name} incidents must be reviewed, use `.rfr` first"]

        if action is Action.UNMITIGATE and not incident.acknowledged_at:
            return ["incident was never acknowledged"]

        return []
