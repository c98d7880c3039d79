"""Escalation conditions."""

from enum import StrEnum


class NagCondition(StrEnum):
    """Ways an incident can stall long enough to warrant a reminder."""

    NO_COMMS = "no_comms"
    NO_POINT = "no_point"
    NEED_COMM_UPDATE = "need_comm_update"
    NEED_INITIAL_COMM = "need_initial_comm"
