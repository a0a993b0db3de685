"""CivicTrack CLI — presentation layer.

Thin adapter: workflow rules live in ``core`` / ``modules``.  Commands
map operator intents to domain calls and format the outcome.  Every
mutating command runs as the actor named by ``--as``.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import structlog
import typer
from rich import print
from rich.table import Table

from civictrack.core.audit import SqliteAuditLog, export_history, history
from civictrack.core.classifier import classify, recovery_actions
from civictrack.core.db import open_db
from civictrack.core.errors import (
    OperationFailed,
    PermissionDenied,
    RepoRootNotFound,
    StateTransitionInvalid,
    Unauthenticated,
)
from civictrack.core.logging import configure_logging
from civictrack.core.models import Actor, ActorRole, BulkOperationResult, PriorityLevel, ReportStatus
from civictrack.core.repository import SqliteReportStore, StaticActorResolver, create_report
from civictrack.core.settings import Settings
from civictrack.modules.bulk import BulkExecutor
from civictrack.modules.mutations import (
    Deletion,
    MutationSpec,
    PriorityUpdate,
    StatusUpdate,
    WorkerAssignment,
)
from civictrack.modules.notifications import NotificationDispatcher, SqliteNotificationSink
from civictrack.modules.workflow import ReportWorkflow

logger = structlog.get_logger()

app = typer.Typer(help="CivicTrack — report status workflow and bulk operations.")

T = TypeVar("T")

_STATUS_COLORS = {
    "pending": "white",
    "acknowledged": "cyan",
    "in_progress": "yellow",
    "resolved": "green",
    "closed": "dim",
}


@app.callback(invoke_without_command=True)
def _main_callback(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", envvar="CIVIC_LOG_LEVEL", help="Log level."),
    log_json: bool = typer.Option(True, "--log-json/--log-text", envvar="CIVIC_LOG_JSON", help="JSON or human logs."),
) -> None:
    """Configure logging + settings, then store in context for sub-commands."""
    configure_logging(level=log_level, json_output=log_json)
    try:
        settings = Settings(log_level=log_level, log_json=log_json)
    except RepoRootNotFound:
        print("[red]ERROR:[/red] could not find project root (pyproject.toml not found in parents).")
        raise typer.Exit(code=2)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings

    if ctx.invoked_subcommand is None:
        print(ctx.get_help())


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _db(ctx: typer.Context) -> sqlite3.Connection:
    if "db" not in ctx.obj:
        s = _settings(ctx)
        s.ensure_dirs()
        ctx.obj["db"] = open_db(s.db_path)
    return ctx.obj["db"]


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _actor(ctx: typer.Context, actor_id: str) -> Actor:
    store = SqliteReportStore(_db(ctx))
    actor = _run(store.get_actor(actor_id))
    if actor is None:
        print(f"[red]ERROR:[/red] Unknown actor '{actor_id}'. Run [bold]civictrack add-actor[/bold] first.")
        raise typer.Exit(code=1)
    return actor


def _workflow(ctx: typer.Context, actor: Actor) -> ReportWorkflow:
    s = _settings(ctx)
    conn = _db(ctx)
    store = SqliteReportStore(conn)
    return ReportWorkflow(
        store,
        SqliteAuditLog(conn),
        actors=store,
        resolver=StaticActorResolver(actor),
        dispatcher=NotificationDispatcher(SqliteNotificationSink(conn)),
        retry_policy=s.retry_policy,
        notes_max_length=s.notes_max_length,
    )


def _parse_status(value: str) -> ReportStatus:
    try:
        return ReportStatus(value.lower())
    except ValueError:
        valid = ", ".join(s.value for s in ReportStatus)
        print(f"[red]ERROR:[/red] Invalid status '{value}'. Valid: {valid}")
        raise typer.Exit(code=1)


# ── Setup ───────────────────────────────────────────────────
@app.command()
def init(ctx: typer.Context) -> None:
    """Create directories and the database."""
    s = _settings(ctx)
    _db(ctx)
    print(f"[green]CivicTrack initialised.[/green]  Database: {s.db_path}")
    logger.info("civictrack_initialised", db=str(s.db_path))


@app.command(name="add-actor")
def add_actor(
    ctx: typer.Context,
    actor_id: str = typer.Argument(help="Actor identifier."),
    role: ActorRole = typer.Option(..., "--role", "-r", help="admin, worker or citizen."),
    name: str = typer.Option("", "--name", help="Display name."),
) -> None:
    """Register an actor in the directory."""
    store = SqliteReportStore(_db(ctx))
    try:
        _run(store.add_actor(Actor(id=actor_id, role=role, full_name=name)))
    except sqlite3.IntegrityError:
        print(f"[red]ERROR:[/red] Actor '{actor_id}' already exists.")
        raise typer.Exit(code=1)
    print(f"[green]Added actor:[/green] {actor_id}  [{role.value}]")


@app.command(name="add-report")
def add_report(
    ctx: typer.Context,
    report_id: str = typer.Argument(help="Unique identifier for this report."),
    title: str = typer.Option(..., "--title", "-t", help="Short description of the issue."),
    citizen: str = typer.Option(..., "--citizen", "-c", help="Submitting citizen's actor id."),
    priority: PriorityLevel = typer.Option(PriorityLevel.MEDIUM, "--priority", "-p"),
) -> None:
    """File a new report in PENDING state."""
    conn = _db(ctx)
    store = SqliteReportStore(conn)
    audit = SqliteAuditLog(conn)

    async def _create() -> None:
        report = await create_report(
            store, report_id=report_id, title=title, citizen_id=citizen, priority=priority
        )
        await audit.append(report.id, None, ReportStatus.PENDING, citizen, "Report submitted")

    try:
        _run(_create())
    except sqlite3.IntegrityError:
        print(f"[red]ERROR:[/red] Report '{report_id}' already exists.")
        raise typer.Exit(code=1)
    except ValueError as exc:
        print(f"[red]ERROR:[/red] {exc}")
        raise typer.Exit(code=1)
    print(f"[green]Filed:[/green] {report_id} — {title}  [pending]")


@app.command()
def reports(
    ctx: typer.Context,
    status: str = typer.Option(None, "--status", "-s", help="Only reports in this status."),
) -> None:
    """List tracked reports."""
    store = SqliteReportStore(_db(ctx))
    rows = _run(store.list_reports(status=_parse_status(status) if status else None))
    if not rows:
        print("[yellow]No reports.[/yellow]")
        return

    table = Table(title="Reports")
    table.add_column("ID", style="bold")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Worker")
    table.add_column("Updated")
    for r in rows:
        color = _STATUS_COLORS.get(r.status.value, "white")
        table.add_row(
            r.id,
            r.title,
            f"[{color}]{r.status.value}[/{color}]",
            r.priority.value,
            r.assigned_worker_id or "",
            r.updated_utc[:19],
        )
    print(table)


# ── Single-item mutation ────────────────────────────────────
@app.command(name="transition")
def transition_cmd(
    ctx: typer.Context,
    report_id: str = typer.Argument(help="Report to move."),
    to: str = typer.Option(..., "--to", "-t", help="Target status."),
    actor_id: str = typer.Option(..., "--as", help="Acting actor id."),
    notes: str = typer.Option("", "--notes", "-n", help="Note recorded in the history."),
) -> None:
    """Move a report to a new status (validated and audited)."""
    to_status = _parse_status(to)
    actor = _actor(ctx, actor_id)
    workflow = _workflow(ctx, actor)

    async def _go() -> Any:
        try:
            return await workflow.update_status(report_id, to_status, actor, notes)
        finally:
            await workflow.dispatcher.drain()

    try:
        entry = _run(_go())
    except (StateTransitionInvalid, PermissionDenied, Unauthenticated) as exc:
        print(f"[red]REJECTED:[/red] {exc}")
        raise typer.Exit(code=1)
    except OperationFailed as exc:
        _print_failure(exc)
        raise typer.Exit(code=1)

    old = entry.old_status.value if entry.old_status else "∅"
    print(f"[green]Transitioned:[/green] {report_id}  {old} → {entry.new_status.value}")


# ── Bulk mutations ──────────────────────────────────────────
def _bulk(ctx: typer.Context, ids: list[str], mutation: MutationSpec, actor_id: str) -> None:
    actor = _actor(ctx, actor_id)
    workflow = _workflow(ctx, actor)
    executor = BulkExecutor(workflow, max_concurrency=_settings(ctx).bulk_max_concurrency)

    async def _go() -> BulkOperationResult:
        try:
            return await executor.execute(ids, mutation, actor)
        finally:
            await workflow.dispatcher.drain()

    result = _run(_go())
    _print_bulk(result)
    if not result.success:
        raise typer.Exit(code=1)


@app.command(name="bulk-status")
def bulk_status(
    ctx: typer.Context,
    ids: list[str] = typer.Argument(help="Report ids."),
    to: str = typer.Option(..., "--to", "-t", help="Target status."),
    actor_id: str = typer.Option(..., "--as", help="Acting actor id."),
    notes: str = typer.Option("", "--notes", "-n"),
) -> None:
    """Move many reports to one status."""
    _bulk(ctx, ids, StatusUpdate(new_status=_parse_status(to), notes=notes), actor_id)


@app.command(name="bulk-priority")
def bulk_priority(
    ctx: typer.Context,
    ids: list[str] = typer.Argument(help="Report ids."),
    priority: PriorityLevel = typer.Option(..., "--priority", "-p"),
    actor_id: str = typer.Option(..., "--as", help="Acting actor id."),
) -> None:
    """Set the priority of many reports."""
    _bulk(ctx, ids, PriorityUpdate(priority=priority), actor_id)


@app.command(name="bulk-assign")
def bulk_assign(
    ctx: typer.Context,
    ids: list[str] = typer.Argument(help="Report ids."),
    worker: str = typer.Option(..., "--worker", "-w", help="Worker actor id."),
    actor_id: str = typer.Option(..., "--as", help="Acting actor id."),
) -> None:
    """Assign many reports to one worker (admin only)."""
    _bulk(ctx, ids, WorkerAssignment(worker_id=worker), actor_id)


@app.command(name="bulk-delete")
def bulk_delete(
    ctx: typer.Context,
    ids: list[str] = typer.Argument(help="Report ids."),
    actor_id: str = typer.Option(..., "--as", help="Acting actor id."),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    """Delete many reports (admin only)."""
    if not yes:
        print(f"[red bold]WARNING:[/red bold] This deletes {len(ids)} report(s) and their history.")
        print("Run with --yes to confirm.")
        raise typer.Exit(code=1)
    _bulk(ctx, ids, Deletion(), actor_id)


# ── History ─────────────────────────────────────────────────
@app.command(name="history")
def history_cmd(
    ctx: typer.Context,
    report_id: str = typer.Argument(help="Report id."),
) -> None:
    """Show the status history of a report, newest first."""
    entries = history(_db(ctx), report_id)
    if not entries:
        print(f"[yellow]No history for {report_id}.[/yellow]")
        return
    table = Table(title=f"History — {report_id}")
    table.add_column("When")
    table.add_column("From")
    table.add_column("To", style="bold")
    table.add_column("By")
    table.add_column("Notes")
    for e in entries:
        table.add_row(
            e.created_utc[:19],
            e.old_status.value if e.old_status else "",
            e.new_status.value,
            e.changed_by,
            e.notes,
        )
    print(table)


@app.command(name="export-history")
def export_history_cmd(
    ctx: typer.Context,
    output: Path | None = typer.Option(None, "--output", "-o", help="Output file (default: exports/history.json)."),
) -> None:
    """Export the full status history to JSON."""
    s = _settings(ctx)
    rows = export_history(_db(ctx))
    if output is None:
        assert s.exports_dir is not None
        s.exports_dir.mkdir(parents=True, exist_ok=True)
        output = s.exports_dir / "history.json"
    output.write_text(json.dumps(rows, indent=2, default=str), encoding="utf-8")
    print(f"[green]Exported[/green] {len(rows)} entries → {output}")


@app.command(name="classify")
def classify_cmd(message: str = typer.Argument(help="Raw error message.")) -> None:
    """Show how a raw error message would be classified."""
    classified = classify(message)
    print(f"[bold]{classified.code}[/bold]  retryable={classified.retryable}  action={classified.action.value}")
    print(f"  {classified.user_message}")


# ── Output helpers ──────────────────────────────────────────
def _print_failure(exc: OperationFailed) -> None:
    print(f"[red]FAILED:[/red] {exc.user_message}")
    hints = ", ".join(o.label for o in recovery_actions(exc.classified) if o.primary)
    if hints:
        print(f"  Suggested: {hints}")


def _print_bulk(result: BulkOperationResult) -> None:
    color = "green" if result.success else "red"
    print(
        f"[{color}]Processed {result.processed_count}, failed {result.failed_count}[/{color}]"
    )
    if result.errors:
        table = Table(title="Failures")
        table.add_column("Item", style="bold")
        table.add_column("Error")
        for err in result.errors:
            table.add_row(err.item_id, err.error_message)
        print(table)


def main() -> None:  # noqa: D103
    app()
