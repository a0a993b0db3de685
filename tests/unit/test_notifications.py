"""Tests for civictrack.modules.notifications — detached delivery."""

from __future__ import annotations

import asyncio

import pytest

from civictrack.modules.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationKind,
    SqliteNotificationSink,
)


def _event(recipient: str = "cit-1") -> NotificationEvent:
    return NotificationEvent(
        recipient_id=recipient,
        kind=NotificationKind.STATUS_CHANGE,
        title="Report Status Updated",
        message="Your report is now resolved.",
        report_id="r-1",
    )


class _SlowSink:
    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.delivered: list[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        await self.release.wait()
        self.delivered.append(event)


class _BrokenSink:
    async def notify(self, event: NotificationEvent) -> None:
        raise ConnectionError("push gateway down")


@pytest.mark.asyncio
async def test_dispatch_does_not_wait_for_delivery() -> None:
    sink = _SlowSink()
    dispatcher = NotificationDispatcher(sink)

    dispatcher.dispatch(_event())
    assert dispatcher.pending_count == 1
    assert sink.delivered == []

    sink.release.set()
    await dispatcher.drain()
    assert len(sink.delivered) == 1
    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed() -> None:
    dispatcher = NotificationDispatcher(_BrokenSink())
    dispatcher.dispatch(_event())
    await dispatcher.drain()
    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_without_sink_is_noop() -> None:
    dispatcher = NotificationDispatcher()
    dispatcher.dispatch(_event())
    assert dispatcher.pending_count == 0


def test_without_running_loop_drops() -> None:
    dispatcher = NotificationDispatcher(_BrokenSink())
    dispatcher.dispatch(_event())
    assert dispatcher.pending_count == 0


# ── SQLite sink ─────────────────────────────────────────────
class TestSqliteSink:
    @pytest.mark.asyncio
    async def test_rows_written_and_read(self, conn) -> None:
        sink = SqliteNotificationSink(conn)
        await sink.notify(_event())
        await sink.notify(_event("worker-1"))

        [row] = sink.unread("cit-1")
        assert row["kind"] == "status_change"
        assert row["report_id"] == "r-1"
        assert row["is_read"] == 0

    @pytest.mark.asyncio
    async def test_mark_all_read(self, conn) -> None:
        sink = SqliteNotificationSink(conn)
        await sink.notify(_event())
        await sink.notify(_event())
        assert sink.mark_all_read("cit-1") == 2
        assert sink.unread("cit-1") == []
