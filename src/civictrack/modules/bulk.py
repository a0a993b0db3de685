"""Bulk mutation executor.

One mutation, many report ids.  Orchestration is kind-agnostic::

    execute(ids, mutation, actor):
      ├─ workflow.authorize()          # once; failure → every item fails
      ├─ asyncio.TaskGroup             # one task per id (duplicates included)
      │   └─ for each id:
      │       ├─ semaphore             # bounded pool width
      │       └─ workflow.apply_authorized()   # same path as single-item calls
      ├─ fold outcomes → BulkOperationResult
      └─ audit.record_bulk()           # best effort

Guarantees: ``processed_count + failed_count == len(ids)`` for every call;
one item's failure never aborts, skips or rolls back another; errors are
keyed by the originating id; ``execute`` never raises for item or setup
failures.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

import structlog

from civictrack.core.audit import AuditLog
from civictrack.core.models import Actor, BulkItemError, BulkOperationResult
from civictrack.modules.mutations import MutationSpec
from civictrack.modules.workflow import Authorization, ReportWorkflow, describe_failure

logger = structlog.get_logger()

DEFAULT_MAX_CONCURRENCY = 10

CANCELLED_MESSAGE = "Operation cancelled before this item was processed"


class BulkExecutor:
    def __init__(
        self,
        workflow: ReportWorkflow,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.workflow = workflow
        self.max_concurrency = max_concurrency

    @property
    def audit(self) -> AuditLog:
        return self.workflow.audit

    async def execute(
        self,
        item_ids: Sequence[str],
        mutation: MutationSpec,
        actor: Actor | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> BulkOperationResult:
        """Apply *mutation* to every id in *item_ids* and fold the outcomes.

        *cancel*, when set, stops items that have not started yet; items
        already in flight run to completion.
        """
        ids = list(item_ids)
        batch_id = uuid4().hex[:12]
        started = time.monotonic()
        log = logger.bind(batch_id=batch_id, operation=mutation.kind.value, item_count=len(ids))

        try:
            auth = await self.workflow.authorize(mutation, actor)
        except Exception as exc:
            log.warning("bulk_setup_failed", error=str(exc), error_type=type(exc).__name__)
            return _fail_all(ids, describe_failure(exc))

        log.info("bulk_started", actor_id=auth.actor.id, max_concurrency=self.max_concurrency)

        result = await self._execute_items(ids, mutation, auth, cancel, log)

        log.info(
            "bulk_completed",
            processed_count=result.processed_count,
            failed_count=result.failed_count,
            total_ms=int((time.monotonic() - started) * 1000),
        )
        if result.errors:
            log.warning(
                "bulk_partial_failure",
                failed_items=[e.item_id for e in result.errors[:10]],
                failed_count=result.failed_count,
            )

        await self._record(mutation, auth.actor, ids, result, log)
        return result

    async def _execute_items(
        self,
        ids: list[str],
        mutation: MutationSpec,
        auth: Authorization,
        cancel: asyncio.Event | None,
        log: Any,
    ) -> BulkOperationResult:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(item_id: str) -> BulkItemError | None:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    return BulkItemError(item_id=item_id, error_message=CANCELLED_MESSAGE)
                try:
                    await self.workflow.apply_authorized(item_id, mutation, auth)
                except Exception as exc:
                    log.warning(
                        "bulk_item_failed",
                        item_id=item_id,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    return BulkItemError(item_id=item_id, error_message=describe_failure(exc))
                return None

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(run_one(item_id)) for item_id in ids]

        errors = tuple(err for err in (t.result() for t in tasks) if err is not None)
        return BulkOperationResult(
            processed_count=len(ids) - len(errors),
            failed_count=len(errors),
            errors=errors,
        )

    async def _record(
        self,
        mutation: MutationSpec,
        actor: Actor,
        ids: list[str],
        result: BulkOperationResult,
        log: Any,
    ) -> None:
        try:
            await self.audit.record_bulk(
                mutation.kind, actor.id, ids, mutation.model_dump(mode="json"), result
            )
        except Exception as exc:
            log.error("bulk_history_write_failed", error=str(exc), error_type=type(exc).__name__)


def _fail_all(ids: list[str], message: str) -> BulkOperationResult:
    return BulkOperationResult(
        processed_count=0,
        failed_count=len(ids),
        errors=tuple(BulkItemError(item_id=i, error_message=message) for i in ids),
    )

