"""SQLAlchemy table definitions."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

metadata = MetaData()

incidents = Table(
    "incidents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", Text, nullable=False),
    Column("summary", Text),
    Column("chat_room_uid", String(64), unique=True),
    Column("tracker_uid", String(64), unique=True),
    Column("priority", Integer, nullable=False),
    Column("point", String(64)),
    Column("comms", String(64)),
    Column("triage", String(64)),
    Column("eng_lead", String(64)),
    Column("assigned", String(64)),
    Column("genesis_at", DateTime),
    Column("detected_at", DateTime),
    Column("acknowledged_at", DateTime),
    Column("mitigated_at", DateTime),
    Column("resolved_at", DateTime),
    Column("ready_for_review_at", DateTime),
    Column("completed_at", DateTime),
    Column("archived_at", DateTime),
    Column("canceled_at", DateTime),
    Column("created_by", String(64), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

blockers = Table(
    "blockers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("incident_id", Integer, ForeignKey("incidents.id"), nullable=False, index=True),
    Column("whomst", Text, nullable=False),
    Column("reason", Text),
    Column("created_at", DateTime, nullable=False),
    Column("unblocked_at", DateTime),
)

affected = Table(
    "affected",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("incident_id", Integer, ForeignKey("incidents.id"), nullable=False),
    Column("what", Text, nullable=False),
    UniqueConstraint("incident_id", "what", name="uq_affected_incident_what"),
)

components = Table(
    "components",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("incident_id", Integer, ForeignKey("incidents.id"), nullable=False),
    Column("which", Text, nullable=False),
    UniqueConstraint("incident_id", "which", name="uq_components_incident_which"),
)

log_entries = Table(
    "log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("incident_id", Integer, ForeignKey("incidents.id"), nullable=False, index=True),
    Column("type", String(32), nullable=False),
    Column("text", Text, nullable=False),
    Column("context_url", Text),
    Column("created_by", String(64), nullable=False),
    Column("created_at", DateTime, nullable=False, index=True),
)

user_cache = Table(
    "usercache",
    metadata,
    Column("chat_user_id", String(64), primary_key=True),
    Column("tracker_user_id", String(128)),
    Column("reporter_user_id", String(128)),
    Column("name", Text),
    Column("updated_at", DateTime, nullable=False),
)
