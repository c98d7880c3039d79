"""Built-in priority table used when the config file does not override it."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .schema import PriorityLevel

DEFAULT_PRIORITY_LEVELS: dict[int, dict[str, Any]] = {
    1: {
        "name": "P1",
        "emoji": "fire",
        "description": (
            "Critical issue that warrants public notification and liaison with executive "
            "teams. The site is in a critical state and is actively impacting a large number "
            "of customers, or we have an obviously critical security incident. All hands on "
            "deck! Highest communication cadence required."
        ),
        "aliases": ["hi", "high", "critical", "crit"],
        "nag": {
            "no_comms": 120,
            "no_point": 180,
            "need_comm_update": 1800,
            "need_initial_comm": 360,
        },
        "report_required": True,
        "review_required": True,
        "is_high_priority": True,
    },
    2: {
        "name": "P2",
        "emoji": "fire",
        "description": (
            "Something is seriously broken or degraded, but the blast radius is limited. "
            "Most breaking incidents fall into this category. _Serious_ security incidents "
            "involving _more than one_ customer fall into this category."
        ),
        "aliases": ["mid", "med", "medium", "normal"],
        "nag": {
            "no_comms": 1200,
            "no_point": 1800,
            "need_comm_update": 3600,
            "need_initial_comm": 360,
        },
        "report_required": True,
        "review_required": True,
        "is_high_priority": True,
    },
    3: {
        "name": "P3",
        "emoji": "dash",
        "description": (
            "Something is broken, or not fully working as intended, but it's not resulting "
            "in customer-facing errors or is impacting a very small segment of customers. "
            "Security incidents involving a _single_ customer fall here."
        ),
        "aliases": ["lo", "low", "lite", "light"],
        "nag": {
            "no_comms": 1200,
            "no_point": 1800,
            "need_initial_comm": 600,
        },
    },
    4: {
        "name": "P4",
        "emoji": "heavy_multiplication_x",
        "description": (
            "Not a breaking incident. These are bugs or improvements that should be moved "
            "to sprint work and prioritized as time allows."
        ),
        "aliases": ["backlog", "none"],
    },
    5: {
        "name": "P5",
        "emoji": "heavy_multiplication_x",
        "description": "Not a breaking incident. Not an issue at all.",
        "aliases": ["wontfix"],
    },
}

# Priority used by `.low`
LOW_PRIORITY = 3


def default_priority_levels() -> dict[int, PriorityLevel]:
    """Build a fresh copy of the built-in priority table."""
    from .schema import PriorityLevel

    return {p: PriorityLevel.model_validate(level) for p, level in DEFAULT_PRIORITY_LEVELS.items()}
