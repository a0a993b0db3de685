"""Tests for civictrack.core.state — role-gated transition validator."""

from __future__ import annotations

from datetime import datetime, timezone
from itertools import product

import pytest

from civictrack.core.models import ActorRole, ReportStatus
from civictrack.core.state import (
    ALLOWED_TRANSITIONS,
    ROLE_TRANSITIONS,
    allowed_targets,
    is_edge_allowed,
    resolution_fields,
    validate_transition,
)

S = ReportStatus

_PERMITTED: dict[ActorRole, set[tuple[ReportStatus, ReportStatus]]] = {
    ActorRole.CITIZEN: set(),
    ActorRole.WORKER: {
        (S.ACKNOWLEDGED, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.RESOLVED),
        (S.IN_PROGRESS, S.ACKNOWLEDGED),
    },
    ActorRole.ADMIN: {
        (S.PENDING, S.ACKNOWLEDGED),
        (S.PENDING, S.CLOSED),
        (S.ACKNOWLEDGED, S.IN_PROGRESS),
        (S.ACKNOWLEDGED, S.RESOLVED),
        (S.ACKNOWLEDGED, S.PENDING),
        (S.IN_PROGRESS, S.RESOLVED),
        (S.IN_PROGRESS, S.ACKNOWLEDGED),
        (S.RESOLVED, S.CLOSED),
        (S.RESOLVED, S.IN_PROGRESS),
        (S.CLOSED, S.RESOLVED),
    },
}


# ── Full matrix ─────────────────────────────────────────────
@pytest.mark.parametrize(
    "role, current, requested",
    list(product(ActorRole, ReportStatus, ReportStatus)),
)
def test_matrix(role: ActorRole, current: ReportStatus, requested: ReportStatus) -> None:
    result = validate_transition(current, requested, role)
    expected = (current, requested) in _PERMITTED[role]
    assert result.valid is expected
    if expected:
        assert result.error is None
    else:
        assert result.error


def test_citizen_never_valid() -> None:
    for current, requested in product(ReportStatus, ReportStatus):
        assert validate_transition(current, requested, ActorRole.CITIZEN).valid is False


def test_only_admin_leaves_closed() -> None:
    for role, requested in product(ActorRole, ReportStatus):
        result = validate_transition(S.CLOSED, requested, role)
        if result.valid:
            assert role is ActorRole.ADMIN
            assert requested is S.RESOLVED


# ── Scenarios ───────────────────────────────────────────────
def test_worker_cannot_touch_pending_admin_can() -> None:
    rejected = validate_transition(S.PENDING, S.IN_PROGRESS, ActorRole.WORKER)
    assert rejected.valid is False
    assert "worker" in rejected.error and "pending" in rejected.error

    accepted = validate_transition(S.PENDING, S.ACKNOWLEDGED, ActorRole.ADMIN)
    assert accepted.valid is True


def test_accepts_plain_strings() -> None:
    assert validate_transition("acknowledged", "in_progress", "worker").valid is True


# ── Check order ─────────────────────────────────────────────
class TestCheckOrder:
    def test_unknown_role_first(self) -> None:
        result = validate_transition("bogus", "bogus", "mayor")
        assert result.valid is False
        assert result.error.startswith("invalid role")

    def test_unknown_status(self) -> None:
        result = validate_transition("archived", S.PENDING, ActorRole.ADMIN)
        assert result.valid is False
        assert "unknown status" in result.error

    def test_source_state_named(self) -> None:
        result = validate_transition(S.RESOLVED, S.CLOSED, ActorRole.WORKER)
        assert result.error == "role 'worker' cannot change reports in 'resolved' status"

    def test_target_named(self) -> None:
        result = validate_transition(S.ACKNOWLEDGED, S.RESOLVED, ActorRole.WORKER)
        assert result.error == "role 'worker' cannot move a report from 'acknowledged' to 'resolved'"

    def test_adjacency_backstop(self, monkeypatch: pytest.MonkeyPatch) -> None:
        widened = {**ROLE_TRANSITIONS[ActorRole.ADMIN], S.PENDING: frozenset({S.RESOLVED})}
        monkeypatch.setitem(ROLE_TRANSITIONS, ActorRole.ADMIN, widened)
        result = validate_transition(S.PENDING, S.RESOLVED, ActorRole.ADMIN)
        assert result.valid is False
        assert result.error == "invalid status transition"


# ── Tables ──────────────────────────────────────────────────
def test_all_statuses_have_adjacency() -> None:
    for status in ReportStatus:
        assert status in ALLOWED_TRANSITIONS, f"{status} missing from ALLOWED_TRANSITIONS"


def test_role_edges_within_ceiling() -> None:
    for role, matrix in ROLE_TRANSITIONS.items():
        for source, targets in matrix.items():
            for target in targets:
                assert is_edge_allowed(source, target), f"{role}: {source} → {target}"


def test_allowed_targets() -> None:
    assert allowed_targets(S.IN_PROGRESS, ActorRole.WORKER) == {S.RESOLVED, S.ACKNOWLEDGED}
    assert allowed_targets(S.PENDING, ActorRole.WORKER) == frozenset()
    assert allowed_targets(S.CLOSED, ActorRole.ADMIN) == {S.RESOLVED}


# ── resolution_fields ──────────────────────────────────────
class TestResolutionFields:
    NOW = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_entering_resolved_stamps(self) -> None:
        fields = resolution_fields(S.IN_PROGRESS, S.RESOLVED, self.NOW)
        assert fields["status"] == "resolved"
        assert fields["resolved_utc"] == self.NOW.isoformat()

    def test_reopening_clears(self) -> None:
        fields = resolution_fields(S.RESOLVED, S.IN_PROGRESS, self.NOW)
        assert "resolved_utc" in fields
        assert fields["resolved_utc"] is None

    def test_closing_keeps_stamp(self) -> None:
        fields = resolution_fields(S.RESOLVED, S.CLOSED, self.NOW)
        assert "resolved_utc" not in fields

    def test_unrelated_transition(self) -> None:
        fields = resolution_fields(S.PENDING, S.ACKNOWLEDGED, self.NOW)
        assert set(fields) == {"status", "updated_utc"}
