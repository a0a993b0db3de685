"""Best-effort notification side channel.

:meth:`NotificationDispatcher.dispatch` schedules delivery as a background
task and returns immediately.  Delivery runs behind its own error
boundary: a failing sink is logged and forgotten, never raised into the
mutation that triggered it.  ``drain()`` waits for whatever is still in
flight (shutdown, tests).
"""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

from civictrack.core.repository import utc_now

logger = structlog.get_logger()


class NotificationKind(str, Enum):
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    PRIORITY_CHANGE = "priority_change"
    REPORT_DELETED = "report_deleted"


@dataclass(frozen=True)
class NotificationEvent:
    recipient_id: str
    kind: NotificationKind
    title: str
    message: str
    report_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    async def notify(self, event: NotificationEvent) -> None: ...


class SqliteNotificationSink:
    """Writes in-app notifications to the ``notifications`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    async def notify(self, event: NotificationEvent) -> None:
        self.conn.execute(
            """
            INSERT INTO notifications (recipient_id, kind, title, message, report_id, created_utc)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event.recipient_id,
                event.kind.value,
                event.title,
                event.message,
                event.report_id,
                utc_now().isoformat(),
            ),
        )

    def unread(self, recipient_id: str) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM notifications WHERE recipient_id = ? AND is_read = 0 ORDER BY seq DESC",
            (recipient_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def mark_all_read(self, recipient_id: str) -> int:
        cur = self.conn.execute(
            "UPDATE notifications SET is_read = 1 WHERE recipient_id = ? AND is_read = 0",
            (recipient_id,),
        )
        return cur.rowcount


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, event: NotificationEvent) -> None:
        """Schedule delivery of *event*.  Never blocks, never raises."""
        if self._sink is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError:
            logger.warning("notification_dropped_no_loop", kind=event.kind.value, report_id=event.report_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: NotificationEvent) -> None:
        assert self._sink is not None
        try:
            await self._sink.notify(event)
        except Exception as exc:
            logger.warning(
                "notification_delivery_failed",
                kind=event.kind.value,
                report_id=event.report_id,
                recipient_id=event.recipient_id,
                error=str(exc),
            )
        else:
            logger.debug("notification_delivered", kind=event.kind.value, report_id=event.report_id)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
