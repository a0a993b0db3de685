"""Mutation specs and the role → operation permission table.

A mutation spec is the minimal per-item body of one mutation kind.  The
bulk executor never looks inside it; it only hands it to the workflow.
"""

from __future__ import annotations

from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, field_validator

from civictrack.core.models import Actor, ActorRole, MutationKind, PriorityLevel, ReportStatus


class _Mutation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ClassVar[MutationKind]


class StatusUpdate(_Mutation):
    kind: ClassVar[MutationKind] = MutationKind.STATUS_UPDATE

    new_status: ReportStatus
    notes: str = ""


class PriorityUpdate(_Mutation):
    kind: ClassVar[MutationKind] = MutationKind.PRIORITY_UPDATE

    priority: PriorityLevel


class WorkerAssignment(_Mutation):
    kind: ClassVar[MutationKind] = MutationKind.WORKER_ASSIGNMENT

    worker_id: str

    @field_validator("worker_id")
    @classmethod
    def _worker_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("worker_id must not be blank")
        return v


class Deletion(_Mutation):
    kind: ClassVar[MutationKind] = MutationKind.DELETE


MutationSpec = Union[StatusUpdate, PriorityUpdate, WorkerAssignment, Deletion]


OPERATION_PERMISSIONS: dict[ActorRole, frozenset[MutationKind]] = {
    ActorRole.ADMIN: frozenset(MutationKind),
    ActorRole.WORKER: frozenset({MutationKind.STATUS_UPDATE, MutationKind.PRIORITY_UPDATE}),
    ActorRole.CITIZEN: frozenset(),
}


def can_perform(actor: Actor, kind: MutationKind) -> bool:
    """Coarse gate: may *actor* request *kind* at all?  Per-report scope is checked later."""
    return actor.is_active and kind in OPERATION_PERMISSIONS.get(actor.role, frozenset())
