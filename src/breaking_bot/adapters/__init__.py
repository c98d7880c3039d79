"""Concrete implementations of collaborator interfaces."""

from .chat.slack import SlackAdapter
from .reporter.wpcom import WpcomAdapter
from .tracker.jira import JiraAdapter

__all__ = [
    "JiraAdapter",
    "SlackAdapter",
    "WpcomAdapter",
]
