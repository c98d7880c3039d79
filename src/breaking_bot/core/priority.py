"""Lookups over the configured priority table."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from breaking_bot.config.schema import NagIntervals, PrioritiesConfig, PriorityLevel


class PriorityTable:
    """Read-only view of the configured priorities.

    Unknown priorities never raise; they render as ``unknown`` and carry no
    escalation thresholds or policy flags.
    """

    def __init__(self, config: PrioritiesConfig) -> None:
        self._config = config

    @property
    def default(self) -> int:
        return self._config.default

    @property
    def numbers(self) -> list[int]:
        return sorted(self._config.levels)

    def level(self, priority: int) -> PriorityLevel | None:
        return self._config.levels.get(priority)

    def is_valid(self, priority: int) -> bool:
        return priority in self._config.levels

    def name(self, priority: int) -> str:
        level = self.level(priority)
        return level.name if level else "unknown"

    def emoji(self, priority: int) -> str:
        level = self.level(priority)
        return level.emoji if level else "grey_question"

    def description(self, priority: int) -> str:
        level = self.level(priority)
        return level.description if level else "unknown"

    def nag_intervals(self, priority: int) -> NagIntervals | None:
        level = self.level(priority)
        return level.nag if level else None

    def is_review_required(self, priority: int) -> bool:
        level = self.level(priority)
        return level.review_required if level else False

    def is_report_required(self, priority: int) -> bool:
        level = self.level(priority)
        return level.report_required if level else False

    def is_high_priority(self, priority: int) -> bool:
        level = self.level(priority)
        return level.is_high_priority if level else False

    def parse(self, text: str) -> int | None:
        """Resolve user input (``2``, ``p2``, ``medium``) to a priority number.

        Args:
            text: User input

        Returns:
            The priority number, or None if nothing matches
        """
        needle = text.strip().lower()
        if needle.startswith("p") and needle[1:].isdigit():
            needle = needle[1:]

        if needle.isdigit():
            priority = int(needle)
            return priority if self.is_valid(priority) else None

        for priority, level in self._config.levels.items():
            if needle == level.name.lower() or needle in level.aliases:
                return priority

        return None
