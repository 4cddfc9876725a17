"""End-to-end workflow tests: transitions, edits, comments, atomicity and conflicts."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from case_workflow import workflow
from case_workflow.assignment import assign_case
from case_workflow.audit import AuditLedger, verify_chain
from case_workflow.clock import FixedClock
from case_workflow.db import session_scope
from case_workflow.errors import ConflictError, RejectionKind
from case_workflow.models import Case, CaseAuditLog
from case_workflow.repository import CaseRepository

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _actions(case_id: int) -> list[str]:
    return [e.action for e in workflow.get_audit_trail(case_id).value]


def _audit_count() -> int:
    with session_scope() as session:
        return session.execute(select(func.count()).select_from(CaseAuditLog)).scalar_one()


def _status(case_id: int) -> str:
    with session_scope() as session:
        return session.get(Case, case_id).status


def _to_under_review(case_id, users, clock, config) -> None:
    assert assign_case(case_id, users.analyst, users.manager, clock=clock, config=config).ok
    for target in ("In Progress", "Under Review"):
        result = workflow.transition_case(
            case_id, target, users.analyst, clock=clock, config=config
        )
        assert result.ok, result.rejection


def test_create_case_starts_in_created(open_case, users) -> None:
    case = open_case(priority="High")
    assert case.status == "Created"
    assert case.case_code == "CASE-01000"
    assert case.created_by == users.requester
    assert case.assigned_to is None
    assert case.sla_due_at == START + timedelta(hours=24)
    assert case.sla_status == "on_track"
    assert case.available_transitions == []
    assert _actions(case.id) == ["CASE_CREATED"]


def test_case_codes_are_sequential(open_case) -> None:
    assert [open_case().case_code for _ in range(3)] == ["CASE-01000", "CASE-01001", "CASE-01002"]


def test_create_case_unknown_actor(config, clock) -> None:
    result = workflow.create_case(999, "t", "IT", "Low", clock=clock, config=config)
    assert result.rejection.kind == RejectionKind.NOT_FOUND


def test_create_case_unknown_choices_are_rejected(users, clock, config) -> None:
    result = workflow.create_case(
        users.requester, "t", "Legal", "Urgent", clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.REQUIREMENT_UNMET
    assert len(result.rejection.errors) == 2
    assert result.rejection.errors[0].startswith("category must be one of")
    assert _audit_count() == 0


def test_edit_with_unknown_priority_is_rejected(open_case, users, clock, config) -> None:
    case = open_case(priority="Low")
    result = workflow.update_case_details(
        case.id, users.manager, priority="Urgent", clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.REQUIREMENT_UNMET
    assert result.rejection.errors == (
        "priority must be one of ['Critical', 'High', 'Low', 'Medium']",
    )
    assert _actions(case.id) == ["CASE_CREATED"]


def test_offset_clock_is_stored_as_utc(users, config) -> None:
    local = timezone(timedelta(hours=2))
    clock = FixedClock(datetime(2026, 3, 2, 11, 0, tzinfo=local))
    created = workflow.create_case(
        users.requester, "VPN down", "IT", "Critical", clock=clock, config=config
    ).value
    assert created.sla_due_at == datetime(2026, 3, 2, 13, 0, tzinfo=UTC)

    reread = workflow.get_case(created.id, users.requester, clock=clock).value
    assert reread.sla_due_at == datetime(2026, 3, 2, 13, 0, tzinfo=UTC)
    assert reread.hours_remaining == 4.0
    assert reread.created_at == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    assert workflow.add_comment(created.id, users.analyst, "On it", clock=clock).ok
    trail = workflow.get_audit_trail(created.id).value
    assert {e.timestamp for e in trail} == {datetime(2026, 3, 2, 9, 0, tzinfo=UTC)}
    with session_scope() as session:
        assert verify_chain(session).ok


def test_full_lifecycle_to_closed(open_case, users, clock, config) -> None:
    case = open_case()
    _to_under_review(case.id, users, clock, config)
    result = workflow.transition_case(case.id, "Closed", users.manager, clock=clock, config=config)
    assert result.ok
    assert result.value.status == "Closed"
    assert result.value.sla_status == "closed"
    assert result.value.available_transitions == []
    assert _actions(case.id) == [
        "STATUS_CHANGED",
        "STATUS_CHANGED",
        "STATUS_CHANGED",
        "STATUS_CHANGED",
        "CASE_ASSIGNED",
        "CASE_CREATED",
    ]
    newest = workflow.get_audit_trail(case.id).value[0]
    assert (newest.previous_status, newest.new_status) == ("Under Review", "Closed")
    assert newest.performed_by_name == "Mona Manager"
    assert newest.performed_by_email == "mona@example.com"
    assert newest.performed_by_role == "manager"


def test_unauthorized_transition_writes_nothing(open_case, users, clock, config) -> None:
    case = open_case()
    _to_under_review(case.id, users, clock, config)
    before = _audit_count()
    result = workflow.transition_case(case.id, "Closed", users.analyst, clock=clock, config=config)
    assert not result.ok
    assert result.rejection.kind == RejectionKind.UNAUTHORIZED_ROLE
    assert result.rejection.is_policy_violation
    assert result.rejection.message == (
        "Role 'analyst' is not authorized for this transition. Required: manager or admin"
    )
    assert _status(case.id) == "Under Review"
    assert _audit_count() == before


def test_invalid_edge_rejected(open_case, users, clock, config) -> None:
    case = open_case()
    result = workflow.transition_case(case.id, "Closed", users.admin, clock=clock, config=config)
    assert result.rejection.kind == RejectionKind.INVALID_EDGE
    assert "Valid destinations: Assigned" in result.rejection.message


def test_manual_assign_transition_needs_assignee(open_case, users, clock, config) -> None:
    case = open_case()
    result = workflow.transition_case(
        case.id, "Assigned", users.manager, clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.REQUIREMENT_UNMET
    assert result.rejection.errors == (
        "Case must have an assignee before setting status to Assigned",
    )
    assert _status(case.id) == "Created"


def test_closed_case_cannot_move(open_case, users, clock, config) -> None:
    case = open_case()
    _to_under_review(case.id, users, clock, config)
    assert workflow.transition_case(case.id, "Closed", users.admin, clock=clock, config=config).ok
    result = workflow.transition_case(
        case.id, "In Progress", users.admin, clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.UNKNOWN_SOURCE
    assert result.rejection.message == "No transitions available from status: Closed"


def test_rework_records_one_entry(open_case, users, clock, config) -> None:
    case = open_case()
    _to_under_review(case.id, users, clock, config)
    before = _audit_count()
    result = workflow.transition_case(
        case.id, "In Progress", users.manager, clock=clock, config=config
    )
    assert result.ok
    assert result.audit_entry_ids and len(result.audit_entry_ids) == 1
    assert _audit_count() == before + 1
    latest = workflow.get_audit_trail(case.id).value[0]
    assert (latest.previous_status, latest.new_status) == ("Under Review", "In Progress")


def test_transition_missing_case(users, clock, config) -> None:
    result = workflow.transition_case(404, "Closed", users.admin, clock=clock, config=config)
    assert result.rejection.kind == RejectionKind.NOT_FOUND
    assert result.rejection.message == "Case not found"


def test_priority_edit_restarts_sla_from_edit_time(open_case, users, clock, config) -> None:
    case = open_case(priority="Low")
    assert case.sla_due_at == START + timedelta(hours=72)
    clock.advance(timedelta(hours=10))
    result = workflow.update_case_details(
        case.id, users.manager, priority="Critical", clock=clock, config=config
    )
    assert result.ok
    assert result.value.priority == "Critical"
    assert result.value.sla_due_at == START + timedelta(hours=14)
    entry = workflow.get_audit_trail(case.id).value[0]
    assert entry.action == "CASE_UPDATED"
    assert entry.details["changes"]["priority"] == {"old": "Low", "new": "Critical"}


def test_edit_without_priority_keeps_deadline(open_case, users, clock, config) -> None:
    case = open_case(priority="Medium")
    clock.advance(timedelta(hours=5))
    result = workflow.update_case_details(
        case.id, users.requester, title="VPN down for the whole floor", clock=clock, config=config
    )
    assert result.ok
    assert result.value.sla_due_at == case.sla_due_at
    assert result.value.title == "VPN down for the whole floor"


def test_edit_with_same_priority_is_no_op(open_case, users, clock, config) -> None:
    case = open_case(priority="High")
    result = workflow.update_case_details(
        case.id, users.manager, priority="High", clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.REQUIREMENT_UNMET
    assert result.rejection.message == "No fields to update"


def test_edit_forbidden_for_unrelated_analyst(open_case, users, clock, config) -> None:
    case = open_case()
    result = workflow.update_case_details(
        case.id, users.analyst2, title="hijack", clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.FORBIDDEN


def test_assignee_may_edit(open_case, users, clock, config) -> None:
    case = open_case()
    assert assign_case(case.id, users.analyst, users.manager, clock=clock, config=config).ok
    result = workflow.update_case_details(
        case.id, users.analyst, category="Compliance", clock=clock, config=config
    )
    assert result.ok
    assert result.value.category == "Compliance"


def test_comments_newest_first(open_case, users, clock) -> None:
    case = open_case()
    assert workflow.add_comment(case.id, users.requester, "first", clock=clock).ok
    clock.advance(timedelta(minutes=1))
    assert workflow.add_comment(case.id, users.manager, "second", clock=clock).ok
    comments = workflow.list_comments(case.id).value
    assert [c.comment for c in comments] == ["second", "first"]
    assert comments[0].created_by_role == "manager"
    assert _actions(case.id)[:2] == ["COMMENT_ADDED", "COMMENT_ADDED"]


def test_comment_on_missing_case(users, clock) -> None:
    result = workflow.add_comment(12345, users.requester, "hello", clock=clock)
    assert result.rejection.kind == RejectionKind.NOT_FOUND


def test_list_cases_scoped_by_role(open_case, users, clock, config) -> None:
    low = open_case(priority="Low")
    critical = open_case(priority="Critical")
    other = workflow.create_case(
        users.manager, "Payroll", "Finance", "Medium", clock=clock, config=config
    ).value
    assert assign_case(low.id, users.analyst, users.manager, clock=clock, config=config).ok

    def ids(viewer: int) -> list[int]:
        cases, total = workflow.list_cases(viewer, clock=clock).value
        assert total == len(cases)
        return [c.id for c in cases]

    assert ids(users.requester) == [critical.id, low.id]
    assert ids(users.analyst) == [low.id]
    assert ids(users.analyst2) == []
    assert ids(users.manager) == [critical.id, other.id, low.id]


def test_list_cases_filters_and_pages(open_case, users, clock) -> None:
    for _ in range(3):
        open_case(priority="High")
    open_case(priority="Low")
    cases, total = workflow.list_cases(users.admin, priority="High", limit=2, clock=clock).value
    assert total == 3
    assert len(cases) == 2
    cases, total = workflow.list_cases(
        users.admin, priority="High", page=2, limit=2, clock=clock
    ).value
    assert len(cases) == 1


def test_get_case_lists_viewer_transitions(open_case, users, clock, config) -> None:
    case = open_case()
    assert assign_case(case.id, users.analyst, users.manager, clock=clock, config=config).ok
    assert workflow.get_case(case.id, users.analyst, clock=clock).value.available_transitions == [
        "In Progress"
    ]
    assert workflow.get_case(case.id, users.manager, clock=clock).value.available_transitions == []


def test_sla_status_on_case_list_reads_overdue(open_case, users, clock) -> None:
    case = open_case(priority="Critical")
    clock.advance(timedelta(hours=5))
    assert workflow.get_case(case.id, users.admin, clock=clock).value.sla_status == "overdue"


def test_failed_audit_append_rolls_back_status(open_case, users, clock, config, monkeypatch):
    case = open_case()
    assert assign_case(case.id, users.analyst, users.manager, clock=clock, config=config).ok
    before = _audit_count()

    def boom(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(AuditLedger, "append", boom)
    with pytest.raises(RuntimeError, match="audit store unavailable"):
        workflow.transition_case(case.id, "In Progress", users.analyst, clock=clock, config=config)
    monkeypatch.undo()
    assert _status(case.id) == "Assigned"
    assert _audit_count() == before


def test_conflict_is_retried_then_succeeds(open_case, users, clock, config, monkeypatch) -> None:
    case = open_case()
    original = CaseRepository.update
    calls: list[int] = []

    def flaky(self, case_id, fields, **kwargs):
        calls.append(case_id)
        if len(calls) == 1:
            raise ConflictError(case_id, {"status": kwargs.get("expected_status")})
        return original(self, case_id, fields, **kwargs)

    monkeypatch.setattr(CaseRepository, "update", flaky)
    result = assign_case(case.id, users.analyst, users.manager, clock=clock, config=config)
    assert result.ok
    assert len(calls) == 2
    assert _actions(case.id) == ["STATUS_CHANGED", "CASE_ASSIGNED", "CASE_CREATED"]


def test_persistent_conflict_becomes_rejection(open_case, users, clock, config, monkeypatch):
    case = open_case()
    calls: list[int] = []

    def always_conflict(self, case_id, fields, **kwargs):
        calls.append(case_id)
        raise ConflictError(case_id, {})

    monkeypatch.setattr(CaseRepository, "update", always_conflict)
    result = assign_case(
        case.id,
        users.analyst,
        users.manager,
        clock=clock,
        config={**config, "workflow": {"max_conflict_retries": 2}},
    )
    assert result.rejection.kind == RejectionKind.CONFLICT
    assert result.rejection.retryable
    assert len(calls) == 2
    assert _status(case.id) == "Created"


def test_concurrent_writer_is_detected_and_redecided(
    open_case, users, clock, config, monkeypatch
) -> None:
    """Another writer moves the case between our read and our write; the retry re-decides."""
    case = open_case()
    assert assign_case(case.id, users.analyst, users.manager, clock=clock, config=config).ok
    original = CaseRepository.update
    raced: list[bool] = []

    def racing_update(self, case_id, fields, **kwargs):
        if not raced:
            raced.append(True)
            with session_scope() as other:
                other.execute(
                    update(Case).where(Case.id == case_id).values(status="In Progress")
                )
        return original(self, case_id, fields, **kwargs)

    monkeypatch.setattr(CaseRepository, "update", racing_update)
    result = workflow.transition_case(
        case.id, "In Progress", users.analyst, clock=clock, config=config
    )
    assert result.rejection.kind == RejectionKind.INVALID_EDGE
    assert _status(case.id) == "In Progress"
    assert _actions(case.id).count("STATUS_CHANGED") == 1


def test_repository_update_checks_expected_status(open_case) -> None:
    case = open_case()
    with pytest.raises(ConflictError):
        with session_scope() as session:
            CaseRepository(session).update(
                case.id, {"title": "x"}, expected_status="Under Review"
            )
    with session_scope() as session:
        updated = CaseRepository(session).update(case.id, {"title": "x"}, expected_status="Created")
        assert updated.title == "x"


def test_repository_update_checks_expected_assignee(open_case, users) -> None:
    case = open_case()
    with pytest.raises(ConflictError):
        with session_scope() as session:
            CaseRepository(session).update(
                case.id, {"assigned_to": users.analyst}, expected_assignee=users.analyst2
            )
