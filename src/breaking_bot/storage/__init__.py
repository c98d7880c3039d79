"""Durable incident storage."""

from .database import EDITABLE_FIELDS, MILESTONE_FIELDS, Database
from .schema import metadata

__all__ = [
    "Database",
    "EDITABLE_FIELDS",
    "MILESTONE_FIELDS",
    "metadata",
]
