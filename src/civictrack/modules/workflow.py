"""Single-item mutation path for reports.

Every mutation, whether it comes from one click or from a bulk
request, goes through :class:`ReportWorkflow`.  Within one report the
order is fixed::

    authorise → fetch → validate → write store → append history → notify (detached)

* Rule rejections (:class:`StateTransitionInvalid`, :class:`PermissionDenied`)
  are raised as-is; nothing has been written at that point.
* Store reads and writes run under the retry coordinator.  What still
  fails is raised as :class:`OperationFailed` carrying a classified error.
* A history write that fails after the status committed raises
  :class:`AuditWriteFailed` and is not retried.
* Notifications are fire-and-forget; their failures only reach the log.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

import structlog

from civictrack.core.audit import AuditLog
from civictrack.core.classifier import classify, log_error
from civictrack.core.errors import (
    CivicTrackError,
    OperationFailed,
    PermissionDenied,
    ReportNotFound,
    StateTransitionInvalid,
    Unauthenticated,
)
from civictrack.core.models import Actor, ActorRole, MutationKind, ReportStatus, StatusHistoryEntry
from civictrack.core.repository import ActorDirectory, ActorResolver, RecordStore, Report, utc_now
from civictrack.core.retry import RetryPolicy, Sleep, with_retry
from civictrack.core.state import resolution_fields, validate_transition
from civictrack.modules.mutations import (
    Deletion,
    MutationSpec,
    PriorityUpdate,
    StatusUpdate,
    WorkerAssignment,
    can_perform,
)
from civictrack.modules.notes_guard import DEFAULT_NOTES_MAX_LENGTH, sanitise_notes
from civictrack.modules.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationKind,
)

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Authorization:
    """Outcome of the once-per-request checks that precede any item."""

    actor: Actor
    kind: MutationKind
    assignee: Actor | None = None


class ReportWorkflow:
    def __init__(
        self,
        store: RecordStore,
        audit: AuditLog,
        *,
        actors: ActorDirectory | None = None,
        resolver: ActorResolver | None = None,
        dispatcher: NotificationDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
        notes_max_length: int = DEFAULT_NOTES_MAX_LENGTH,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.store = store
        self.audit = audit
        self.actors = actors
        self.resolver = resolver
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.retry_policy = retry_policy or RetryPolicy()
        self.notes_max_length = notes_max_length
        self._sleep = sleep

    # ── Public single-item API ──────────────────────────────
    async def update_status(
        self,
        report_id: str,
        new_status: ReportStatus | str,
        actor: Actor | None = None,
        notes: str = "",
    ) -> StatusHistoryEntry:
        """Move one report to *new_status* and return the history entry written."""
        mutation = StatusUpdate(new_status=ReportStatus(new_status), notes=notes)
        auth = await self.authorize(mutation, actor)
        entry = await self.apply_authorized(report_id, mutation, auth)
        assert entry is not None
        return entry

    async def apply(
        self, report_id: str, mutation: MutationSpec, actor: Actor | None = None
    ) -> StatusHistoryEntry | None:
        auth = await self.authorize(mutation, actor)
        return await self.apply_authorized(report_id, mutation, auth)

    # ── Shared path (also used by the bulk executor) ────────
    async def authorize(self, mutation: MutationSpec, actor: Actor | None = None) -> Authorization:
        """Resolve the actor and check it may request this kind of mutation.

        Raises
        ------
        Unauthenticated
            No actor given and none resolvable.
        PermissionDenied
            The role may not request this kind, or the account is inactive.
        ValueError
            An assignment names something that is not an active worker.
        """
        if actor is None:
            if self.resolver is None:
                raise Unauthenticated("no authenticated actor for this request")
            actor = await self.resolver.current_actor()

        if not actor.is_active:
            raise PermissionDenied(actor.role.value, mutation.kind.value, "account is disabled")
        if not can_perform(actor, mutation.kind):
            raise PermissionDenied(actor.role.value, mutation.kind.value)

        assignee: Actor | None = None
        if isinstance(mutation, WorkerAssignment):
            if self.actors is not None:
                assignee = await self._call(
                    lambda: self.actors.get_actor(mutation.worker_id),  # type: ignore[union-attr]
                    context="get_actor",
                )
            if assignee is None or assignee.role is not ActorRole.WORKER or not assignee.is_active:
                raise ValueError(f"invalid worker: {mutation.worker_id}")

        return Authorization(actor=actor, kind=mutation.kind, assignee=assignee)

    async def apply_authorized(
        self, report_id: str, mutation: MutationSpec, auth: Authorization
    ) -> StatusHistoryEntry | None:
        report = await self._fetch(report_id)
        if isinstance(mutation, StatusUpdate):
            return await self._change_status(report, mutation.new_status, auth.actor, mutation.notes)
        if isinstance(mutation, PriorityUpdate):
            await self._change_priority(report, mutation, auth.actor)
            return None
        if isinstance(mutation, WorkerAssignment):
            assert auth.assignee is not None
            return await self._assign(report, auth.assignee, auth.actor)
        if isinstance(mutation, Deletion):
            await self._delete(report, auth.actor)
            return None
        raise TypeError(f"unsupported mutation: {type(mutation).__name__}")

    # ── Per-kind steps ──────────────────────────────────────
    async def _change_status(
        self,
        report: Report,
        new_status: ReportStatus,
        actor: Actor,
        notes: str,
        *,
        extra_fields: dict[str, str | None] | None = None,
    ) -> StatusHistoryEntry:
        old_status = report.status
        verdict = validate_transition(old_status, new_status, actor.role)
        if not verdict.valid:
            raise StateTransitionInvalid(old_status.value, new_status.value, verdict.error or "")
        self._check_worker_scope(report, actor, MutationKind.STATUS_UPDATE, allow_unassigned=True)

        notes = sanitise_notes(notes, max_length=self.notes_max_length)
        now = utc_now()
        fields = resolution_fields(old_status, new_status, now)
        if notes:
            fields["notes"] = append_update_note(report.notes, notes, now)
        if extra_fields:
            fields.update(extra_fields)

        await self._call(
            lambda: self.store.update(report.id, fields, expected_status=old_status),
            context="update_status",
            report_id=report.id,
        )
        logger.info(
            "report_status_updated",
            report_id=report.id,
            old_status=old_status.value,
            new_status=new_status.value,
            actor_id=actor.id,
        )

        entry = await self.audit.append(report.id, old_status, new_status, actor.id, notes)

        message = f'Your report "{report.title}" is now {new_status.value.replace("_", " ")}'
        self.dispatcher.dispatch(
            NotificationEvent(
                recipient_id=report.citizen_id,
                kind=NotificationKind.STATUS_CHANGE,
                title="Report Status Updated",
                message=f"{message}. Note: {notes}" if notes else f"{message}.",
                report_id=report.id,
                data={"old_status": old_status.value, "new_status": new_status.value},
            )
        )
        return entry

    async def _change_priority(self, report: Report, mutation: PriorityUpdate, actor: Actor) -> None:
        self._check_worker_scope(report, actor, MutationKind.PRIORITY_UPDATE, allow_unassigned=False)
        await self._call(
            lambda: self.store.update(
                report.id,
                {"priority": mutation.priority.value, "updated_utc": utc_now().isoformat()},
            ),
            context="update_priority",
            report_id=report.id,
        )
        logger.info(
            "report_priority_updated",
            report_id=report.id,
            old_priority=report.priority.value,
            new_priority=mutation.priority.value,
            actor_id=actor.id,
        )
        self.dispatcher.dispatch(
            NotificationEvent(
                recipient_id=report.citizen_id,
                kind=NotificationKind.PRIORITY_CHANGE,
                title="Report Priority Updated",
                message=f'Your report "{report.title}" now has {mutation.priority.value} priority.',
                report_id=report.id,
            )
        )

    async def _assign(self, report: Report, worker: Actor, actor: Actor) -> StatusHistoryEntry | None:
        fields: dict[str, str | None] = {"assigned_worker_id": worker.id}
        entry: StatusHistoryEntry | None = None

        if report.status is ReportStatus.PENDING:
            # Assignment acknowledges a pending report through the audited path.
            entry = await self._change_status(
                report,
                ReportStatus.ACKNOWLEDGED,
                actor,
                f"Assigned to {worker.full_name or worker.id}",
                extra_fields=fields,
            )
        else:
            fields["updated_utc"] = utc_now().isoformat()
            await self._call(
                lambda: self.store.update(report.id, fields),
                context="assign_worker",
                report_id=report.id,
            )

        logger.info("report_assigned", report_id=report.id, worker_id=worker.id, actor_id=actor.id)
        name = worker.full_name or "a field worker"
        self.dispatcher.dispatch(
            NotificationEvent(
                recipient_id=report.citizen_id,
                kind=NotificationKind.ASSIGNMENT,
                title="Report Assigned",
                message=f'Your report "{report.title}" has been assigned to {name} for resolution.',
                report_id=report.id,
            )
        )
        self.dispatcher.dispatch(
            NotificationEvent(
                recipient_id=worker.id,
                kind=NotificationKind.ASSIGNMENT,
                title="New Report Assignment",
                message="You have been assigned a new report. Please review and take appropriate action.",
                report_id=report.id,
            )
        )
        return entry

    async def _delete(self, report: Report, actor: Actor) -> None:
        await self._call(
            lambda: self.store.delete(report.id),
            context="delete_report",
            report_id=report.id,
        )
        logger.info("report_deleted", report_id=report.id, actor_id=actor.id)
        self.dispatcher.dispatch(
            NotificationEvent(
                recipient_id=report.citizen_id,
                kind=NotificationKind.REPORT_DELETED,
                title="Report Deleted",
                message=f'Your report "{report.title}" has been deleted by an administrator.',
            )
        )

    # ── Helpers ─────────────────────────────────────────────
    @staticmethod
    def _check_worker_scope(
        report: Report, actor: Actor, kind: MutationKind, *, allow_unassigned: bool
    ) -> None:
        if actor.role is not ActorRole.WORKER:
            return
        if report.assigned_worker_id == actor.id:
            return
        if allow_unassigned and report.assigned_worker_id is None:
            return
        raise PermissionDenied(actor.role.value, kind.value, f"report {report.id} is assigned to another worker")

    async def _fetch(self, report_id: str) -> Report:
        async def load() -> Report:
            report = await self.store.get(report_id)
            if report is None:
                raise ReportNotFound(report_id)
            return report

        return await self._call(load, context="get_report", report_id=report_id)

    async def _call(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: str,
        report_id: str | None = None,
    ) -> T:
        """Run a store call under retry; surface what still fails as :class:`OperationFailed`."""
        try:
            return await with_retry(operation, self.retry_policy, sleep=self._sleep, context=context)
        except (OperationFailed, PermissionDenied, StateTransitionInvalid):
            raise
        except ValueError:
            raise
        except Exception as exc:
            classified = log_error(exc, context, report_id=report_id)
            raise OperationFailed(classified, exc) from exc


def describe_failure(exc: BaseException) -> str:
    """Text safe to show next to a failed item."""
    if isinstance(exc, OperationFailed):
        return exc.user_message
    if isinstance(exc, (CivicTrackError, ValueError)):
        return str(exc)
    return classify(exc).user_message


def append_update_note(existing: str | None, notes: str, when: datetime) -> str:
    """Append *notes* to a report's running notes under a dated header."""
    block = f"--- Status update ({when.isoformat(timespec='seconds')}) ---\n{notes}"
    return f"{existing}\n\n{block}" if existing else block
