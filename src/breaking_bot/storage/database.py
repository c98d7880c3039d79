"""Async durable storage on SQLAlchemy Core.

Every public method runs in its own transaction. Driver errors are wrapped
in :class:`StorageError` so command handlers can report a failed write
without knowing about SQLAlchemy.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import Row, and_, delete, func, insert, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from breaking_bot.core.date import utcnow
from breaking_bot.models.incident import Affected, Blocker, Component, Incident
from breaking_bot.models.log import COMM_LOG_TYPES, LogEntry, LogType
from breaking_bot.models.user import UserEntry
from breaking_bot.storage.schema import (
    affected,
    blockers,
    components,
    incidents,
    log_entries,
    metadata,
    user_cache,
)
from breaking_bot.utils.async_helpers import StorageError

log = structlog.get_logger()

# Incident columns that handlers may set through set_incident_field
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "summary",
        "tracker_uid",
        "priority",
        "point",
        "comms",
        "triage",
        "eng_lead",
        "assigned",
    }
)

MILESTONE_FIELDS = frozenset(
    {
        "genesis_at",
        "detected_at",
        "acknowledged_at",
        "mitigated_at",
        "resolved_at",
        "ready_for_review_at",
        "completed_at",
    }
)


class Database:
    """Incident storage backed by an async SQLAlchemy engine.

    Example:
        db = Database.from_url("sqlite+aiosqlite:///:memory:")
        await db.create_schema()
        incident = await db.create_incident("Checkout is down", "C123", 1, "U1")
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> Database:
        return cls(create_async_engine(url, echo=echo))

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _begin(self, operation: str) -> AsyncIterator[AsyncConnection]:
        try:
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            log.error("storage_operation_failed", operation=operation, error=str(e))
            raise StorageError(f"{operation} failed: {e}") from e

    async def create_schema(self) -> None:
        async with self._begin("create_schema") as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            log.warning("storage_ping_failed", error=str(e))
            return False
        return True

    # -------------------------------------------------------------------------
    # Incidents
    # -------------------------------------------------------------------------

    async def create_incident(
        self,
        title: str,
        chat_room_uid: str,
        priority: int,
        created_by: str,
        at: datetime | None = None,
    ) -> Incident:
        now = at or utcnow()
        values = {
            "title": title,
            "chat_room_uid": chat_room_uid,
            "priority": priority,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }

        async with self._begin("create_incident") as conn:
            result = await conn.execute(insert(incidents).values(**values))
            incident_id = result.inserted_primary_key[0]

        return Incident(
            id=incident_id,
            chat_room_uid=chat_room_uid,
            title=title,
            priority=priority,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    async def start_incident(
        self,
        title: str,
        priority: int,
        created_by: str,
        create_room: Callable[[int], Awaitable[str]],
        at: datetime | None = None,
    ) -> Incident:
        """Create an incident and its chat room in one transaction.

        The room is created once the incident id is known. If room creation
        fails the incident row is rolled back and the error propagates.

        Args:
            title: Incident title
            priority: Validated priority number
            created_by: Chat user id of the declarer
            create_room: Coroutine function creating the room for an incident id

        Returns:
            The new incident, bound to its room
        """
        now = at or utcnow()

        async with self._begin("start_incident") as conn:
            result = await conn.execute(
                insert(incidents).values(
                    title=title,
                    priority=priority,
                    created_by=created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            incident_id = result.inserted_primary_key[0]

            room = await create_room(incident_id)
            await conn.execute(
                update(incidents).where(incidents.c.id == incident_id).values(chat_room_uid=room)
            )

        return Incident(
            id=incident_id,
            chat_room_uid=room,
            title=title,
            priority=priority,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    async def find_incident(self, chat_room_uid: str) -> Incident | None:
        async with self._begin("find_incident") as conn:
            row = (
                await conn.execute(
                    select(incidents).where(incidents.c.chat_room_uid == chat_room_uid)
                )
            ).first()
            if row is None:
                return None
            loaded = await self._with_collections(conn, [row])

        return loaded[0]

    async def find_incidents_in_progress(self) -> list[Incident]:
        """Return every incident that is neither archived nor canceled."""
        statement = (
            select(incidents)
            .where(incidents.c.archived_at.is_(None))
            .where(incidents.c.canceled_at.is_(None))
            .order_by(incidents.c.id)
        )

        async with self._begin("find_incidents_in_progress") as conn:
            rows = (await conn.execute(statement)).all()
            return await self._with_collections(conn, rows)

    async def set_incident_field(self, incident_id: int, field: str, value: Any) -> bool:
        """Set one editable column.

        Raises:
            ValueError: If ``field`` is not an editable column
        """
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Incident field {field!r} is not editable")

        return await self._update_incident("set_incident_field", incident_id, {field: value})

    async def set_incident_milestones(
        self, incident_id: int, **milestones: datetime | None
    ) -> bool:
        """Set (or clear, with None) lifecycle timestamps.

        Raises:
            ValueError: If a name is not a settable milestone
        """
        unknown = set(milestones) - MILESTONE_FIELDS
        if unknown:
            raise ValueError(f"Not settable milestones: {sorted(unknown)}")

        return await self._update_incident("set_incident_milestones", incident_id, milestones)

    async def archive_incident(
        self, incident_id: int, at: datetime | None = None
    ) -> datetime | None:
        """Mark an incident archived.

        Returns:
            The archive time, or None if it was already archived or canceled
        """
        return await self._set_terminal("archived_at", incident_id, at or utcnow())

    async def cancel_incident(
        self, incident_id: int, at: datetime | None = None
    ) -> datetime | None:
        """Mark an incident canceled.

        Returns:
            The cancel time, or None if it was already archived or canceled
        """
        return await self._set_terminal("canceled_at", incident_id, at or utcnow())

    async def _set_terminal(self, column: str, incident_id: int, at: datetime) -> datetime | None:
        statement = (
            update(incidents)
            .where(incidents.c.id == incident_id)
            .where(incidents.c.archived_at.is_(None))
            .where(incidents.c.canceled_at.is_(None))
            .values({column: at, "updated_at": at})
        )

        async with self._begin(f"set_{column}") as conn:
            result = await conn.execute(statement)

        return at if result.rowcount else None

    async def _update_incident(
        self, operation: str, incident_id: int, values: dict[str, Any]
    ) -> bool:
        statement = (
            update(incidents)
            .where(incidents.c.id == incident_id)
            .values(**values, updated_at=utcnow())
        )

        async with self._begin(operation) as conn:
            result = await conn.execute(statement)

        return bool(result.rowcount)

    # -------------------------------------------------------------------------
    # Blockers
    # -------------------------------------------------------------------------

    async def add_blocker(
        self,
        incident_id: int,
        whomst: str,
        reason: str | None = None,
        at: datetime | None = None,
    ) -> Blocker:
        now = at or utcnow()

        async with self._begin("add_blocker") as conn:
            result = await conn.execute(
                insert(blockers).values(
                    incident_id=incident_id, whomst=whomst, reason=reason, created_at=now
                )
            )

        return Blocker(
            id=result.inserted_primary_key[0],
            incident_id=incident_id,
            whomst=whomst,
            reason=reason,
            created_at=now,
        )

    async def unblock_blocker(
        self, incident_id: int, blocker_id: int, at: datetime | None = None
    ) -> Blocker | None:
        """Clear one active blocker.

        Returns:
            The cleared blocker, or None if no such active blocker exists
        """
        now = at or utcnow()
        active = and_(
            blockers.c.id == blocker_id,
            blockers.c.incident_id == incident_id,
            blockers.c.unblocked_at.is_(None),
        )

        async with self._begin("unblock_blocker") as conn:
            row = (await conn.execute(select(blockers).where(active))).first()
            if row is None:
                return None
            await conn.execute(update(blockers).where(active).values(unblocked_at=now))

        blocker = _blocker_from_row(row)
        blocker.unblocked_at = now
        return blocker

    async def unblock_all_blockers(
        self, incident_id: int, at: datetime | None = None
    ) -> list[Blocker]:
        """Clear every active blocker of an incident and return them."""
        now = at or utcnow()
        active = and_(blockers.c.incident_id == incident_id, blockers.c.unblocked_at.is_(None))

        async with self._begin("unblock_all_blockers") as conn:
            rows = (await conn.execute(select(blockers).where(active))).all()
            if rows:
                await conn.execute(update(blockers).where(active).values(unblocked_at=now))

        cleared = [_blocker_from_row(row) for row in rows]
        for blocker in cleared:
            blocker.unblocked_at = now
        return cleared

    # -------------------------------------------------------------------------
    # Affected and components
    # -------------------------------------------------------------------------

    async def add_affected(self, incident_id: int, whats: Sequence[str]) -> list[Affected]:
        """Add affected items, skipping values already stored.

        Returns:
            Only the newly stored items
        """
        added = await self._add_unique(
            "add_affected", affected, affected.c.what, "what", incident_id, whats
        )
        return [Affected(incident_id=incident_id, what=what) for what in added]

    async def remove_affected(self, incident_id: int, what: str) -> bool:
        async with self._begin("remove_affected") as conn:
            result = await conn.execute(
                delete(affected)
                .where(affected.c.incident_id == incident_id)
                .where(affected.c.what == what)
            )
        return bool(result.rowcount)

    async def add_components(self, incident_id: int, whiches: Sequence[str]) -> list[Component]:
        """Add components, skipping values already stored.

        Returns:
            Only the newly stored components
        """
        added = await self._add_unique(
            "add_components", components, components.c.which, "which", incident_id, whiches
        )
        return [Component(incident_id=incident_id, which=which) for which in added]

    async def remove_component(self, incident_id: int, which: str) -> bool:
        async with self._begin("remove_component") as conn:
            result = await conn.execute(
                delete(components)
                .where(components.c.incident_id == incident_id)
                .where(components.c.which == which)
            )
        return bool(result.rowcount)

    async def _add_unique(
        self,
        operation: str,
        table: Any,
        column: Any,
        key: str,
        incident_id: int,
        values: Iterable[str],
    ) -> list[str]:
        wanted = list(dict.fromkeys(values))
        if not wanted:
            return []

        async with self._begin(operation) as conn:
            existing = set(
                (
                    await conn.execute(
                        select(column)
                        .where(table.c.incident_id == incident_id)
                        .where(column.in_(wanted))
                    )
                ).scalars()
            )
            added = [value for value in wanted if value not in existing]
            if added:
                await conn.execute(
                    insert(table), [{"incident_id": incident_id, key: value} for value in added]
                )

        return added

    # -------------------------------------------------------------------------
    # Log
    # -------------------------------------------------------------------------

    async def add_log_entry(
        self,
        incident_id: int,
        log_type: LogType,
        text: str,
        created_by: str,
        context_url: str | None = None,
        at: datetime | None = None,
    ) -> LogEntry:
        now = at or utcnow()

        async with self._begin("add_log_entry") as conn:
            result = await conn.execute(
                insert(log_entries).values(
                    incident_id=incident_id,
                    type=log_type.value,
                    text=text,
                    context_url=context_url,
                    created_by=created_by,
                    created_at=now,
                )
            )

        return LogEntry(
            id=result.inserted_primary_key[0],
            incident_id=incident_id,
            type=log_type,
            text=text,
            created_by=created_by,
            created_at=now,
            context_url=context_url,
        )

    async def get_log(self, incident_id: int) -> list[LogEntry]:
        statement = (
            select(log_entries)
            .where(log_entries.c.incident_id == incident_id)
            .order_by(log_entries.c.created_at, log_entries.c.id)
        )

        async with self._begin("get_log") as conn:
            rows = (await conn.execute(statement)).all()

        return [_log_entry_from_row(row) for row in rows]

    async def get_syncs_to_do(self, since: datetime) -> dict[str, list[LogEntry]]:
        """Find incidents with log activity at or after ``since``.

        Returns:
            Chat room id -> the incident's full log, oldest first
        """
        touched = (
            select(log_entries.c.incident_id)
            .where(log_entries.c.created_at >= since)
            .distinct()
        )
        statement = (
            select(incidents.c.chat_room_uid, log_entries)
            .join(incidents, incidents.c.id == log_entries.c.incident_id)
            .where(log_entries.c.incident_id.in_(touched))
            .order_by(log_entries.c.created_at, log_entries.c.id)
        )

        async with self._begin("get_syncs_to_do") as conn:
            rows = (await conn.execute(statement)).all()

        syncs: dict[str, list[LogEntry]] = defaultdict(list)
        for row in rows:
            syncs[row.chat_room_uid].append(_log_entry_from_row(row))
        return dict(syncs)

    async def get_most_recent_comm_updates(self) -> dict[str, datetime]:
        """Return the latest comm update or summary time per in-progress room."""
        return await self._latest_log_per_room(
            "get_most_recent_comm_updates",
            log_entries.c.type.in_([t.value for t in COMM_LOG_TYPES]),
        )

    async def get_last_log_activity(self) -> dict[str, datetime]:
        """Return the latest log entry time per in-progress room."""
        return await self._latest_log_per_room("get_last_log_activity")

    async def _latest_log_per_room(self, operation: str, *where: Any) -> dict[str, datetime]:
        statement = (
            select(incidents.c.chat_room_uid, func.max(log_entries.c.created_at).label("latest"))
            .join(incidents, incidents.c.id == log_entries.c.incident_id)
            .where(incidents.c.archived_at.is_(None))
            .where(incidents.c.canceled_at.is_(None))
            .where(*where)
            .group_by(incidents.c.chat_room_uid)
        )

        async with self._begin(operation) as conn:
            rows = (await conn.execute(statement)).all()

        return {row.chat_room_uid: row.latest for row in rows}

    # -------------------------------------------------------------------------
    # User cache
    # -------------------------------------------------------------------------

    async def get_user_cache(self) -> dict[str, UserEntry]:
        async with self._begin("get_user_cache") as conn:
            rows = (await conn.execute(select(user_cache))).all()

        return {
            row.chat_user_id: UserEntry(
                chat_user_id=row.chat_user_id,
                updated_at=row.updated_at,
                tracker_user_id=row.tracker_user_id,
                reporter_user_id=row.reporter_user_id,
                name=row.name,
            )
            for row in rows
        }

    async def upsert_user_entry(self, entry: UserEntry) -> None:
        values = {
            "tracker_user_id": entry.tracker_user_id,
            "reporter_user_id": entry.reporter_user_id,
            "name": entry.name,
            "updated_at": entry.updated_at,
        }

        async with self._begin("upsert_user_entry") as conn:
            result = await conn.execute(
                update(user_cache)
                .where(user_cache.c.chat_user_id == entry.chat_user_id)
                .values(**values)
            )
            if not result.rowcount:
                await conn.execute(
                    insert(user_cache).values(chat_user_id=entry.chat_user_id, **values)
                )

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    async def _with_collections(
        self, conn: AsyncConnection, rows: Sequence[Row[Any]]
    ) -> list[Incident]:
        ids = [row.id for row in rows]
        if not ids:
            return []

        affected_rows = (
            await conn.execute(
                select(affected).where(affected.c.incident_id.in_(ids)).order_by(affected.c.what)
            )
        ).all()
        component_rows = (
            await conn.execute(
                select(components)
                .where(components.c.incident_id.in_(ids))
                .order_by(components.c.which)
            )
        ).all()
        blocker_rows = (
            await conn.execute(
                select(blockers).where(blockers.c.incident_id.in_(ids)).order_by(blockers.c.id)
            )
        ).all()

        by_incident: dict[int, dict[str, list[Any]]] = defaultdict(
            lambda: {"affected": [], "components": [], "blockers": []}
        )
        for row in affected_rows:
            by_incident[row.incident_id]["affected"].append(
                Affected(incident_id=row.incident_id, what=row.what)
            )
        for row in component_rows:
            by_incident[row.incident_id]["components"].append(
                Component(incident_id=row.incident_id, which=row.which)
            )
        for row in blocker_rows:
            by_incident[row.incident_id]["blockers"].append(_blocker_from_row(row))

        return [_incident_from_row(row, **by_incident[row.id]) for row in rows]


def _incident_from_row(row: Row[Any], **collections: list[Any]) -> Incident:
    data = row._asdict()
    return Incident(**data, **collections)


def _blocker_from_row(row: Row[Any]) -> Blocker:
    return Blocker(
        id=row.id,
        incident_id=row.incident_id,
        whomst=row.whomst,
        reason=row.reason,
        created_at=row.created_at,
        unblocked_at=row.unblocked_at,
    )


def _log_entry_from_row(row: Row[Any]) -> LogEntry:
    return LogEntry(
        id=row.id,
        incident_id=row.incident_id,
        type=LogType(row.type),
        text=row.text,
        created_by=row.created_by,
        created_at=row.created_at,
        context_url=row.context_url,
    )
