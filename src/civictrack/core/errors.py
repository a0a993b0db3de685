"""CivicTrack domain exceptions.

Every module raises typed exceptions so callers can handle failures
explicitly instead of catching bare ValueError/RuntimeError.

:func:`civictrack.core.state.validate_transition` returns rejections as
values; the mutation path turns them into :class:`StateTransitionInvalid`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from civictrack.core.models import ClassifiedError


# ── Base ────────────────────────────────────────────────────
class CivicTrackError(Exception):
    """Root exception for all CivicTrack errors."""


# ── Configuration ──────────────────────────────────────────
class RepoRootNotFound(CivicTrackError):
    """Could not locate the project root (pyproject.toml marker)."""

    def __init__(self, start_path: str | None = None) -> None:
        where = f" (searched from {start_path})" if start_path else ""
        super().__init__(f"Project root not found{where}: no pyproject.toml in parent chain")
        self.start_path = start_path


# ── Records / actors ───────────────────────────────────────
class ReportNotFound(CivicTrackError):
    """The record store has no report with this identifier."""

    def __init__(self, report_id: str) -> None:
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


class Unauthenticated(CivicTrackError):
    """No current actor could be resolved for the request."""


class PermissionDenied(CivicTrackError):
    """The actor may not perform this operation (or not on this report)."""

    def __init__(self, role: str, operation: str, detail: str = "") -> None:
        msg = f"Role '{role}' is not permitted to perform '{operation}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.role = role
        self.operation = operation


# ── State machine ───────────────────────────────────────────
class StateTransitionInvalid(CivicTrackError):
    """An illegal state transition was requested."""

    def __init__(self, from_status: str, to_status: str, reason: str = "") -> None:
        super().__init__(reason or f"Invalid transition: {from_status} → {to_status}")
        self.from_status = from_status
        self.to_status = to_status


# ── Store ──────────────────────────────────────────────────
class StoreError(CivicTrackError):
    """The backing record store failed to complete a read or write."""


class StaleRecord(StoreError):
    """A compare-and-set update found the record in an unexpected state."""

    def __init__(self, report_id: str, expected: str) -> None:
        super().__init__(
            f"Report {report_id} changed concurrently (expected status '{expected}')"
        )
        self.report_id = report_id
        self.expected = expected


# ── Surfaced failures ──────────────────────────────────────
class OperationFailed(CivicTrackError):
    """An exceptional failure, classified for display.

    ``str(exc)`` is the raw diagnostic (log it); ``exc.classified.user_message``
    is the only text that may be shown to an end user.
    """

    def __init__(self, classified: ClassifiedError, cause: BaseException | None = None) -> None:
        super().__init__(str(cause) if cause is not None else classified.message)
        self.classified = classified
        self.cause = cause

    @property
    def user_message(self) -> str:
        return self.classified.user_message


class AuditWriteFailed(OperationFailed):
    """The status change committed but its history row could not be written."""
