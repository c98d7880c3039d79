"""Protocol definitions for pluggable collaborators."""

from .chat import ChatProvider
from .reporter import ReportPlatform
from .tracker import IssueTracker

__all__ = ["ChatProvider", "IssueTracker", "ReportPlatform"]
