"""Record store contracts and the SQLite reference store.

The workflow never talks to a database directly: it consumes the
:class:`RecordStore` and :class:`ActorDirectory` protocols.  Any backend
offering ``get / update / delete / insert`` fits.

:class:`SqliteReportStore` is the in-tree implementation.  Its methods are
coroutines so callers treat every store call as a suspension point, but
each one runs a single short SQLite statement (or one explicit
transaction) and is therefore atomic per record.  None of them ever
suspends, so a bulk fan-out over this store runs its items one after
another; the concurrency bound only overlaps work for stores that await
real I/O.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from civictrack.core.errors import ReportNotFound, StaleRecord, StoreError, Unauthenticated
from civictrack.core.models import Actor, ActorRole, PriorityLevel, ReportStatus
from civictrack.modules.notes_guard import validate_id

# Columns a mutation may touch.  Anything else is a programming error.
UPDATABLE_COLUMNS = frozenset(
    {"status", "priority", "assigned_worker_id", "notes", "updated_utc", "resolved_utc"}
)


@dataclass(frozen=True)
class Report:
    """A citizen complaint being tracked."""

    id: str
    title: str
    citizen_id: str
    status: ReportStatus
    priority: PriorityLevel
    created_utc: str
    updated_utc: str
    assigned_worker_id: str | None = None
    notes: str = ""
    resolved_utc: str | None = None


# ── Contracts ───────────────────────────────────────────────
class RecordStore(Protocol):
    async def get(self, report_id: str) -> Report | None: ...

    async def update(
        self,
        report_id: str,
        fields: Mapping[str, Any],
        *,
        expected_status: ReportStatus | None = None,
    ) -> None: ...

    async def delete(self, report_id: str) -> None: ...

    async def insert(self, report: Report) -> None: ...


class ActorDirectory(Protocol):
    async def get_actor(self, actor_id: str) -> Actor | None: ...


class ActorResolver(Protocol):
    async def current_actor(self) -> Actor: ...


class StaticActorResolver:
    """Resolver for contexts where the actor is already known (CLI, jobs)."""

    def __init__(self, actor: Actor | None) -> None:
        self._actor = actor

    async def current_actor(self) -> Actor:
        if self._actor is None:
            raise Unauthenticated("no authenticated actor for this request")
        return self._actor


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── SQLite implementation ───────────────────────────────────
class SqliteReportStore:
    """Record store and actor directory backed by :func:`civictrack.core.db.open_db`."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # -- reports ------------------------------------------------
    async def get(self, report_id: str) -> Report | None:
        row = self._run(
            "SELECT * FROM reports WHERE id = ?", (validate_id(report_id, field="report_id"),)
        ).fetchone()
        return _row_to_report(row) if row is not None else None

    async def update(
        self,
        report_id: str,
        fields: Mapping[str, Any],
        *,
        expected_status: ReportStatus | None = None,
    ) -> None:
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"cannot update columns: {sorted(unknown)}")
        if not fields:
            return

        assignments = ", ".join(f"{col} = ?" for col in fields)
        params: list[Any] = [_to_column(v) for v in fields.values()]
        sql = f"UPDATE reports SET {assignments} WHERE id = ?"
        params.append(report_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status.value)

        cur = self._run(sql, tuple(params))
        if cur.rowcount == 0:
            if await self.get(report_id) is None:
                raise ReportNotFound(report_id)
            assert expected_status is not None
            raise StaleRecord(report_id, expected_status.value)

    async def delete(self, report_id: str) -> None:
        cur = self._run("DELETE FROM reports WHERE id = ?", (report_id,))
        if cur.rowcount == 0:
            raise ReportNotFound(report_id)

    async def insert(self, report: Report) -> None:
        self._run(
            """
            INSERT INTO reports (id, title, citizen_id, assigned_worker_id, status,
                                 priority, notes, created_utc, updated_utc, resolved_utc)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                validate_id(report.id, field="report_id"),
                report.title,
                report.citizen_id,
                report.assigned_worker_id,
                report.status.value,
                report.priority.value,
                report.notes,
                report.created_utc,
                report.updated_utc,
                report.resolved_utc,
            ),
        )

    async def list_reports(self, *, status: ReportStatus | None = None) -> list[Report]:
        if status is None:
            rows = self._run("SELECT * FROM reports ORDER BY created_utc, id").fetchall()
        else:
            rows = self._run(
                "SELECT * FROM reports WHERE status = ? ORDER BY created_utc, id",
                (status.value,),
            ).fetchall()
        return [_row_to_report(r) for r in rows]

    # -- actors -------------------------------------------------
    async def get_actor(self, actor_id: str) -> Actor | None:
        row = self._run("SELECT * FROM actors WHERE id = ?", (actor_id,)).fetchone()
        if row is None:
            return None
        return Actor(
            id=row["id"],
            role=ActorRole(row["role"]),
            full_name=row["full_name"],
            is_active=bool(row["is_active"]),
        )

    async def add_actor(self, actor: Actor) -> None:
        self._run(
            "INSERT INTO actors (id, full_name, role, is_active) VALUES (?, ?, ?, ?)",
            (validate_id(actor.id, field="actor_id"), actor.full_name, actor.role.value, int(actor.is_active)),
        )

    # -- internals ----------------------------------------------
    def _run(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, params)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc


async def create_report(
    store: RecordStore,
    *,
    report_id: str,
    title: str,
    citizen_id: str,
    priority: PriorityLevel = PriorityLevel.MEDIUM,
    notes: str = "",
) -> Report:
    """Insert a new report in ``pending`` state and return it."""
    title = title.strip()
    if not title:
        raise ValueError("title must not be empty")
    now = utc_now().isoformat()
    report = Report(
        id=report_id,
        title=title,
        citizen_id=citizen_id,
        status=ReportStatus.PENDING,
        priority=priority,
        created_utc=now,
        updated_utc=now,
        notes=notes,
    )
    await store.insert(report)
    return report


def _to_column(value: Any) -> Any:
    return value.value if isinstance(value, (ReportStatus, PriorityLevel)) else value


def _row_to_report(row: sqlite3.Row) -> Report:
    return Report(
        id=row["id"],
        title=row["title"],
        citizen_id=row["citizen_id"],
        status=ReportStatus(row["status"]),
        priority=PriorityLevel(row["priority"]),
        created_utc=row["created_utc"],
        updated_utc=row["updated_utc"],
        assigned_worker_id=row["assigned_worker_id"],
        notes=row["notes"],
        resolved_utc=row["resolved_utc"],
    )
