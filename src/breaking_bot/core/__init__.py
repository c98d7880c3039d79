"""Core incident logic.

This module exports the building blocks shared by handlers and engines:
- IncidentMachine: Lifecycle state machine for one incident
- IncidentRegistry: Live incidents keyed by chat room
- PriorityTable: Priority metadata and escalation policy

The orchestrator lives in ``breaking_bot.core.bot`` and the command router
in ``breaking_bot.core.commands``.
"""

from breaking_bot.core.fsm import (
    Action,
    IncidentMachine,
    IncidentState,
    InvalidTransitionError,
    is_incident_active,
    is_incident_updatable,
)
from breaking_bot.core.priority import PriorityTable
from breaking_bot.core.registry import IncidentRegistry

__all__ = [
    "Action",
    "IncidentMachine",
    "IncidentRegistry",
    "IncidentState",
    "InvalidTransitionError",
    "PriorityTable",
    "is_incident_active",
    "is_incident_updatable",
]
