"""Periodic engines."""

from .annoyotron import Annoyotron, due_nags
from .archivist import Archivist, is_archive_eligible
from .base import PeriodicEngine
from .syntrax import Syntrax

__all__ = [
    "Annoyotron",
    "Archivist",
    "PeriodicEngine",
    "Syntrax",
    "due_nags",
    "is_archive_eligible",
]
