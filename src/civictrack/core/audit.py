"""Append-only status history and bulk-operation log.

How the status trail works
--------------------------
1. The workflow commits the report's new status first.
2. ``append()`` then inserts one immutable ``report_status_history`` row
   carrying old/new status, actor and sanitised notes.
3. Rows are never updated (an SQL trigger enforces it) and only go away
   with their report.

Because the status write lands first, history can never name a
``new_status`` the report does not actually hold.  If the append itself
fails, :class:`AuditWriteFailed` is raised for the caller to surface.
It is never retried here: the status change has already committed.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from typing import Any, Protocol

import structlog

from civictrack.core.classifier import classify
from civictrack.core.errors import AuditWriteFailed
from civictrack.core.models import BulkOperationResult, MutationKind, ReportStatus, StatusHistoryEntry
from civictrack.core.repository import utc_now
from civictrack.modules.notes_guard import sanitise_notes

logger = structlog.get_logger()


async def append(
    conn: sqlite3.Connection,
    report_id: str,
    old_status: ReportStatus | None,
    new_status: ReportStatus,
    actor_id: str,
    notes: str = "",
) -> StatusHistoryEntry:
    """Record one committed transition and return the stored entry.

    *old_status* is ``None`` only for the creation entry of a report.

    Raises
    ------
    AuditWriteFailed
        If the row could not be written.  Carries the classified error.
    """
    entry = StatusHistoryEntry(
        report_id=report_id,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor_id,
        notes=sanitise_notes(notes),
        created_utc=utc_now().isoformat(),
    )
    try:
        cur = conn.execute(
            """
            INSERT INTO report_status_history
                (report_id, old_status, new_status, changed_by, notes, created_utc)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.report_id,
                entry.old_status.value if entry.old_status is not None else None,
                entry.new_status.value,
                entry.changed_by,
                entry.notes,
                entry.created_utc,
            ),
        )
    except sqlite3.Error as exc:
        logger.error(
            "status_history_write_failed",
            report_id=report_id,
            new_status=new_status.value,
            error=str(exc),
        )
        raise AuditWriteFailed(classify(exc), exc) from exc

    logger.info(
        "status_history_appended",
        report_id=report_id,
        transition=f"{old_status.value if old_status else '∅'}→{new_status.value}",
        changed_by=actor_id,
        seq=cur.lastrowid,
    )
    return StatusHistoryEntry(
        report_id=entry.report_id,
        old_status=entry.old_status,
        new_status=entry.new_status,
        changed_by=entry.changed_by,
        notes=entry.notes,
        created_utc=entry.created_utc,
        seq=cur.lastrowid,
    )


def history(conn: sqlite3.Connection, report_id: str) -> list[StatusHistoryEntry]:
    """All entries for *report_id*, newest first."""
    rows = conn.execute(
        "SELECT * FROM report_status_history WHERE report_id = ? ORDER BY seq DESC",
        (report_id,),
    ).fetchall()
    return [_row_to_entry(r) for r in rows]


def export_history(conn: sqlite3.Connection) -> list[dict[str, str | int | None]]:
    """The full status trail as plain dicts, oldest first (for JSON export)."""
    rows = conn.execute(
        "SELECT seq, report_id, old_status, new_status, changed_by, notes, created_utc "
        "FROM report_status_history ORDER BY seq"
    ).fetchall()
    return [dict(row) for row in rows]


def record_bulk_operation(
    conn: sqlite3.Connection,
    *,
    kind: MutationKind,
    performed_by: str,
    report_ids: Sequence[str],
    details: dict[str, Any],
    result: BulkOperationResult,
) -> int:
    """Log one executed batch; returns the row's ``seq``."""
    errors = [{"item_id": e.item_id, "error": e.error_message} for e in result.errors]
    cur = conn.execute(
        """
        INSERT INTO bulk_operation_history
            (operation_type, performed_by, report_ids, details,
             success_count, failure_count, errors, created_utc)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            kind.value,
            performed_by,
            json.dumps(list(report_ids)),
            json.dumps(details, sort_keys=True, default=str),
            result.processed_count,
            result.failed_count,
            json.dumps(errors),
            utc_now().isoformat(),
        ),
    )
    return int(cur.lastrowid or 0)


def bulk_operations(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Logged batches, newest first, with JSON columns decoded."""
    rows = conn.execute("SELECT * FROM bulk_operation_history ORDER BY seq DESC").fetchall()
    out: list[dict[str, Any]] = []
    for row in rows:
        item = dict(row)
        for col in ("report_ids", "details", "errors"):
            item[col] = json.loads(item[col])
        out.append(item)
    return out


def _row_to_entry(row: sqlite3.Row) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        report_id=row["report_id"],
        old_status=ReportStatus(row["old_status"]) if row["old_status"] else None,
        new_status=ReportStatus(row["new_status"]),
        changed_by=row["changed_by"],
        notes=row["notes"],
        created_utc=row["created_utc"],
        seq=row["seq"],
    )


class AuditLog(Protocol):
    async def append(
        self,
        report_id: str,
        old_status: ReportStatus | None,
        new_status: ReportStatus,
        actor_id: str,
        notes: str = "",
    ) -> StatusHistoryEntry: ...

    async def record_bulk(
        self,
        kind: MutationKind,
        performed_by: str,
        report_ids: Sequence[str],
        details: dict[str, Any],
        result: BulkOperationResult,
    ) -> None: ...


class SqliteAuditLog:
    """:class:`AuditLog` over the same connection as the report store."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    async def append(
        self,
        report_id: str,
        old_status: ReportStatus | None,
        new_status: ReportStatus,
        actor_id: str,
        notes: str = "",
    ) -> StatusHistoryEntry:
        return await append(self.conn, report_id, old_status, new_status, actor_id, notes)

    async def record_bulk(
        self,
        kind: MutationKind,
        performed_by: str,
        report_ids: Sequence[str],
        details: dict[str, Any],
        result: BulkOperationResult,
    ) -> None:
        record_bulk_operation(
            self.conn,
            kind=kind,
            performed_by=performed_by,
            report_ids=report_ids,
            details=details,
            result=result,
        )
