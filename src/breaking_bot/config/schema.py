"""Pydantic models for configuration schema."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .priorities import default_priority_levels


class DatabaseConfig(BaseModel):
    """Durable storage configuration."""

    url: str = "sqlite+aiosqlite:///breaking.db"
    echo: bool = False

    @field_validator("url")
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """Require an async SQLAlchemy driver."""
        if "+asyncpg" not in v and "+aiosqlite" not in v:
            raise ValueError("Database url must use an async driver (+asyncpg or +aiosqlite)")
        return v


class SlackConfig(BaseModel):
    """Slack-specific configuration."""

    bot_token: str
    app_token: str
    main_room: str | None = None
    room_prefix: str = "breaking-"
    ok_reaction: str = "ok_hand"
    error_reaction: str = "exclamation"

    @field_validator("bot_token")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        """Validate Slack bot token format."""
        if not v.startswith("xoxb-"):
            raise ValueError("Bot token must start with xoxb-")
        return v

    @field_validator("app_token")
    @classmethod
    def validate_app_token(cls, v: str) -> str:
        """Validate Slack app token format."""
        if not v.startswith("xapp-"):
            raise ValueError("App token must start with xapp-")
        return v


class JiraFieldsConfig(BaseModel):
    """Jira custom field ids used by the tracking epic."""

    epic_name: str = "customfield_10011"
    breaking_priority: str = "customfield_10100"
    chat_room_uid: str = "customfield_10101"
    genesis: str = "customfield_10102"
    detected: str = "customfield_10103"
    acknowledged: str = "customfield_10104"
    mitigated: str = "customfield_10105"
    resolved: str = "customfield_10106"
    point_person: str = "customfield_10107"
    comms_person: str = "customfield_10108"


class JiraConfig(BaseModel):
    """Jira-specific configuration."""

    host: str
    email: str
    api_token: str
    tracking_project_key: str
    tracking_labels: list[str] = ["breaking"]
    action_item_project_key: str
    action_item_labels: list[str] = ["breaking-action-item"]
    fields: JiraFieldsConfig = JiraFieldsConfig()
    # Incident state name -> Jira workflow transition id
    transitions: dict[str, int] = {}
    strict_components: bool = False
    component_cache_ttl: int = Field(300, ge=0)
    timeout: float = Field(30.0, gt=0)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Accept a bare host name only."""
        if "://" in v or "/" in v:
            raise ValueError(f"Jira host must be a bare host name, got: {v}")
        return v


class WpcomConfig(BaseModel):
    """WordPress.com report platform configuration."""

    site: str | None = None
    api_token: str | None = None
    base_url: str = "https://public-api.wordpress.com"
    timeout: float = Field(30.0, gt=0)


class NagIntervals(BaseModel):
    """Escalation thresholds in seconds; an unset threshold never fires."""

    no_comms: int | None = Field(None, ge=1)
    no_point: int | None = Field(None, ge=1)
    need_comm_update: int | None = Field(None, ge=1)
    need_initial_comm: int | None = Field(None, ge=1)


class PriorityLevel(BaseModel):
    """Display metadata and policy flags for one priority."""

    name: str
    emoji: str = "grey_question"
    description: str = ""
    aliases: list[str] = []
    url: str | None = None
    nag: NagIntervals | None = None
    report_required: bool = False
    review_required: bool = False
    is_high_priority: bool = False


class PrioritiesConfig(BaseModel):
    """Priority table and default priority."""

    default: int = 2
    levels: dict[int, PriorityLevel] = Field(default_factory=default_priority_levels)

    @model_validator(mode="after")
    def check_default(self) -> "PrioritiesConfig":
        """Ensure the default priority is part of the table."""
        if self.default not in self.levels:
            raise ValueError(f"Default priority {self.default} is not a configured priority")
        return self


class EnginesConfig(BaseModel):
    """Periodic engine cadences and retention windows (seconds)."""

    sync_interval: float = Field(64, gt=0)
    sync_jitter: float = Field(60, ge=0)
    nag_interval: float = Field(64, gt=0)
    archive_interval: float = Field(42 * 60, gt=0)
    completed_retention: int = Field(0, ge=0)
    review_retention: int = Field(30 * 24 * 60 * 60, ge=0)


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path("/var/log/breaking-bot/bot.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Retry configuration for transient failures."""

    max_attempts: int = Field(3, ge=1, le=10)
    initial_delay: float = Field(1.0, ge=0.1, le=10.0)
    max_delay: float = Field(30.0, ge=1.0, le=300.0)


class ChatConfig(BaseModel):
    """Chat provider configuration."""

    provider: Literal["slack"]
    slack: SlackConfig | None = None


class TrackerConfig(BaseModel):
    """Issue tracker configuration."""

    provider: Literal["jira"]
    jira: JiraConfig | None = None


class ReporterConfig(BaseModel):
    """Report platform configuration."""

    provider: Literal["wpcom"]
    wpcom: WpcomConfig | None = None


class BotConfig(BaseSettings):
    """Root configuration for Breaking Bot."""

    chat: ChatConfig
    database: DatabaseConfig = DatabaseConfig()
    tracker: TrackerConfig | None = None
    reporter: ReporterConfig | None = None
    priorities: PrioritiesConfig = PrioritiesConfig()
    engines: EnginesConfig = EnginesConfig()
    logging: LoggingConfig = LoggingConfig()
    retry: RetryConfig = RetryConfig()
    user_cache_freshness: int = Field(72 * 60 * 60, ge=0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
    )
