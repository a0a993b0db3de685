"""Shared fixtures: a seeded SQLite store and a workflow that never sleeps."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from civictrack.core.audit import SqliteAuditLog
from civictrack.core.db import open_db
from civictrack.core.models import Actor, ActorRole, ReportStatus
from civictrack.core.repository import SqliteReportStore
from civictrack.core.retry import RetryPolicy
from civictrack.modules.notifications import NotificationDispatcher, SqliteNotificationSink
from civictrack.modules.workflow import ReportWorkflow

ADMIN = Actor(id="admin-1", role=ActorRole.ADMIN, full_name="Ada Admin")
WORKER = Actor(id="worker-1", role=ActorRole.WORKER, full_name="Walt Worker")
OTHER_WORKER = Actor(id="worker-2", role=ActorRole.WORKER, full_name="Wendy Worker")
CITIZEN = Actor(id="cit-1", role=ActorRole.CITIZEN, full_name="Cy Citizen")
INACTIVE_WORKER = Actor(id="worker-9", role=ActorRole.WORKER, full_name="Idle", is_active=False)

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay_ms=1, max_delay_ms=2)


async def no_sleep(_seconds: float) -> None:
    return None


def seed_report(
    conn: sqlite3.Connection,
    report_id: str,
    *,
    status: ReportStatus = ReportStatus.PENDING,
    worker_id: str | None = None,
    citizen_id: str = CITIZEN.id,
    title: str = "Pothole on Main St",
) -> None:
    conn.execute(
        """
        INSERT INTO reports (id, title, citizen_id, assigned_worker_id, status,
                             priority, created_utc, updated_utc)
        VALUES (?, ?, ?, ?, ?, 'medium', '2025-01-15T12:00:00+00:00', '2025-01-15T12:00:00+00:00')
        """,
        (report_id, title, citizen_id, worker_id, status.value),
    )


@pytest.fixture()
def conn(tmp_path: Path):
    c = open_db(tmp_path / "test.db")
    for actor in (ADMIN, WORKER, OTHER_WORKER, CITIZEN, INACTIVE_WORKER):
        c.execute(
            "INSERT INTO actors (id, full_name, role, is_active) VALUES (?, ?, ?, ?)",
            (actor.id, actor.full_name, actor.role.value, int(actor.is_active)),
        )
    yield c
    c.close()


@pytest.fixture()
def store(conn: sqlite3.Connection) -> SqliteReportStore:
    return SqliteReportStore(conn)


@pytest.fixture()
def sink(conn: sqlite3.Connection) -> SqliteNotificationSink:
    return SqliteNotificationSink(conn)


@pytest.fixture()
def workflow(conn: sqlite3.Connection, store: SqliteReportStore, sink: SqliteNotificationSink) -> ReportWorkflow:
    return ReportWorkflow(
        store,
        SqliteAuditLog(conn),
        actors=store,
        dispatcher=NotificationDispatcher(sink),
        retry_policy=FAST_RETRY,
        sleep=no_sleep,
    )


class FlakyStore:
    """Delegates to a real store; ``update`` fails for chosen ids.

    ``failures[id] = (error, times)`` raises *error* on the first *times*
    updates of that id (``times=None`` → always).
    """

    def __init__(self, inner: SqliteReportStore) -> None:
        self.inner = inner
        self.failures: dict[str, tuple[Exception, int | None]] = {}
        self.update_calls: dict[str, int] = {}

    def fail(self, report_id: str, error: Exception, times: int | None = None) -> None:
        self.failures[report_id] = (error, times)

    async def get(self, report_id):
        return await self.inner.get(report_id)

    async def update(self, report_id, fields, *, expected_status=None):
        calls = self.update_calls.get(report_id, 0) + 1
        self.update_calls[report_id] = calls
        if report_id in self.failures:
            error, times = self.failures[report_id]
            if times is None or calls <= times:
                raise error
        await self.inner.update(report_id, fields, expected_status=expected_status)

    async def delete(self, report_id):
        await self.inner.delete(report_id)

    async def insert(self, report):
        await self.inner.insert(report)

    async def get_actor(self, actor_id):
        return await self.inner.get_actor(actor_id)


@pytest.fixture()
def flaky(store: SqliteReportStore) -> FlakyStore:
    return FlakyStore(store)


@pytest.fixture()
def flaky_workflow(conn: sqlite3.Connection, flaky: FlakyStore, sink: SqliteNotificationSink) -> ReportWorkflow:
    return ReportWorkflow(
        flaky,
        SqliteAuditLog(conn),
        actors=flaky,
        dispatcher=NotificationDispatcher(sink),
        retry_policy=FAST_RETRY,
        sleep=no_sleep,
    )
