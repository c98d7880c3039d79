"""Configuration loading and validation."""

from .loader import load_config
from .schema import (
    BotConfig,
    ChatConfig,
    DatabaseConfig,
    EnginesConfig,
    JiraConfig,
    NagIntervals,
    PrioritiesConfig,
    PriorityLevel,
    ReporterConfig,
    SlackConfig,
    TrackerConfig,
    WpcomConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Root config
    "BotConfig",
    # Top-level configs
    "ChatConfig",
    "DatabaseConfig",
    "EnginesConfig",
    "PrioritiesConfig",
    "TrackerConfig",
    "ReporterConfig",
    # Priority table
    "PriorityLevel",
    "NagIntervals",
    # Provider-specific configs
    "SlackConfig",
    "JiraConfig",
    "WpcomConfig",
]
