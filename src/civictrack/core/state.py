"""Report lifecycle state machine, gated by actor role.

Two tables drive every decision:

* ``ALLOWED_TRANSITIONS`` — the role-independent ceiling.  An edge missing
  here is impossible for everyone, except the explicit administrative
  overrides in ``OVERRIDE_TRANSITIONS``.
* ``ROLE_TRANSITIONS`` — per role, per source state, the targets that role
  may request.  Adding a role or a state is a data change only.

``validate_transition`` never raises: rejections are ordinary business
outcomes and come back as a :class:`ValidationResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from civictrack.core.models import ActorRole, ReportStatus

_S = ReportStatus

ALLOWED_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    _S.PENDING: frozenset({_S.ACKNOWLEDGED, _S.CLOSED}),
    _S.ACKNOWLEDGED: frozenset({_S.IN_PROGRESS, _S.RESOLVED, _S.PENDING}),
    _S.IN_PROGRESS: frozenset({_S.RESOLVED, _S.ACKNOWLEDGED}),
    _S.RESOLVED: frozenset({_S.CLOSED, _S.IN_PROGRESS}),
    _S.CLOSED: frozenset(),
}

# Edges outside the general graph that some role is still allowed to take.
OVERRIDE_TRANSITIONS: frozenset[tuple[ReportStatus, ReportStatus]] = frozenset(
    {(_S.CLOSED, _S.RESOLVED)}
)

ROLE_TRANSITIONS: dict[ActorRole, dict[ReportStatus, frozenset[ReportStatus]]] = {
    ActorRole.CITIZEN: {},
    ActorRole.WORKER: {
        _S.ACKNOWLEDGED: frozenset({_S.IN_PROGRESS}),
        _S.IN_PROGRESS: frozenset({_S.RESOLVED, _S.ACKNOWLEDGED}),
    },
    ActorRole.ADMIN: {
        **ALLOWED_TRANSITIONS,
        _S.CLOSED: frozenset({_S.RESOLVED}),
    },
}

# Statuses a report may not leave without an override.
TERMINAL_STATUSES: frozenset[ReportStatus] = frozenset({_S.CLOSED})


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)

    @classmethod
    def reject(cls, error: str) -> ValidationResult:
        return cls(valid=False, error=error)


def _coerce_role(role: ActorRole | str) -> ActorRole | None:
    try:
        return ActorRole(role)
    except ValueError:
        return None


def _coerce_status(status: ReportStatus | str) -> ReportStatus | None:
    try:
        return ReportStatus(status)
    except ValueError:
        return None


def is_edge_allowed(from_status: ReportStatus, to_status: ReportStatus) -> bool:
    """True if the edge exists in the general graph or as an override."""
    return (
        to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())
        or (from_status, to_status) in OVERRIDE_TRANSITIONS
    )


def allowed_targets(current: ReportStatus, role: ActorRole) -> frozenset[ReportStatus]:
    """Targets *role* may request from *current* (empty if none)."""
    return ROLE_TRANSITIONS.get(role, {}).get(current, frozenset())


def validate_transition(
    current_status: ReportStatus | str,
    requested_status: ReportStatus | str,
    actor_role: ActorRole | str,
) -> ValidationResult:
    """Check whether *actor_role* may move a report from *current_status*
    to *requested_status*.

    Checks run in order and the first failure wins:

    1. the role is known;
    2. the role may act on reports in *current_status* at all;
    3. *requested_status* is among the role's targets for that source;
    4. the edge exists in the general graph (or is an override).
    """
    role = _coerce_role(actor_role)
    if role is None:
        return ValidationResult.reject(f"invalid role: {actor_role!r}")

    current = _coerce_status(current_status)
    requested = _coerce_status(requested_status)
    if current is None or requested is None:
        return ValidationResult.reject(
            f"unknown status in transition {current_status!r} → {requested_status!r}"
        )

    role_matrix = ROLE_TRANSITIONS.get(role, {})
    if current not in role_matrix:
        return ValidationResult.reject(
            f"role '{role.value}' cannot change reports in '{current.value}' status"
        )

    if requested not in role_matrix[current]:
        return ValidationResult.reject(
            f"role '{role.value}' cannot move a report from "
            f"'{current.value}' to '{requested.value}'"
        )

    if not is_edge_allowed(current, requested):
        return ValidationResult.reject("invalid status transition")

    return ValidationResult.ok()


def resolution_fields(
    old_status: ReportStatus,
    new_status: ReportStatus,
    now: datetime,
) -> dict[str, str | None]:
    """Column changes that accompany a committed transition.

    Entering ``resolved`` stamps ``resolved_utc``; leaving ``resolved`` for
    a non-terminal state clears it.  ``resolved → closed`` keeps the stamp.
    """
    fields: dict[str, str | None] = {
        "status": new_status.value,
        "updated_utc": now.isoformat(),
    }
    if new_status is ReportStatus.RESOLVED:
        fields["resolved_utc"] = now.isoformat()
    elif old_status is ReportStatus.RESOLVED and new_status not in TERMINAL_STATUSES:
        fields["resolved_utc"] = None
    return fields
