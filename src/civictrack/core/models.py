"""CivicTrack domain models — enums and core value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ReportStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ActorRole(str, Enum):
    ADMIN = "admin"
    WORKER = "worker"
    CITIZEN = "citizen"


class PriorityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MutationKind(str, Enum):
    STATUS_UPDATE = "status_update"
    PRIORITY_UPDATE = "priority_update"
    WORKER_ASSIGNMENT = "worker_assignment"
    DELETE = "delete"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    RESEND = "resend"
    CONTACT_SUPPORT = "contact_support"
    REFRESH_PAGE = "refresh_page"
    NONE = "none"


@dataclass(frozen=True)
class Actor:
    """An authenticated principal requesting an operation."""

    id: str
    role: ActorRole
    full_name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One committed status transition.  Append-only."""

    report_id: str
    old_status: ReportStatus | None
    new_status: ReportStatus
    changed_by: str
    notes: str
    created_utc: str
    seq: int | None = None


@dataclass(frozen=True)
class ClassifiedError:
    """Normalised failure: stable code, user-safe text, retry hint."""

    code: str
    message: str
    user_message: str
    retryable: bool
    action: RecoveryAction = RecoveryAction.NONE


@dataclass(frozen=True)
class BulkItemError:
    item_id: str
    error_message: str


@dataclass(frozen=True)
class BulkOperationResult:
    """Aggregate outcome of one bulk call.  Never persisted as-is."""

    processed_count: int
    failed_count: int
    errors: tuple[BulkItemError, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def total_count(self) -> int:
        return self.processed_count + self.failed_count

    def as_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "errors": [
                {"item_id": e.item_id, "error": e.error_message} for e in self.errors
            ],
        }
