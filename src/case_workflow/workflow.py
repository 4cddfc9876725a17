"""Case workflow operations: create, transition, edit, comment, and read with SLA status.

Each mutating operation runs in one transaction: the case row and its audit
entries commit together. Status writes are conditioned on the status read at
decision time; a conflicting write is retried from a fresh read.
"""

from __future__ import annotations

from datetime import datetime
from logging import getLogger
from typing import Any

from sqlalchemy.orm import Session

from case_workflow.audit import AuditLedger, AuditTrailEntry
from case_workflow.case_lifecycle import (
    CASE_CATEGORY_VALUES,
    CASE_PRIORITY_VALUES,
    MANAGER_ROLES,
    CaseStatus,
    Category,
    Priority,
    can_transition,
    get_available_transitions,
    validate_transition_requirements,
)
from case_workflow.clock import Clock, SystemClock, as_utc
from case_workflow.config import workflow_settings
from case_workflow.db import run_in_transaction, session_scope
from case_workflow.errors import OperationResult, Rejection, RejectionKind
from case_workflow.models import Case, CaseComment, User
from case_workflow.repository import CaseRepository, UserDirectory
from case_workflow.schemas import CaseResponse, CommentResponse
from case_workflow.sla import SlaConsumer, classify, due_at, hours_remaining

logger = getLogger(__name__)


def case_to_response(
    case: Case,
    *,
    now: datetime | None = None,
    viewer_role: str | None = None,
    consumer: SlaConsumer = SlaConsumer.CASE_LIST,
) -> CaseResponse:
    """Snapshot a case (inside its session). SLA fields are filled when ``now`` is given."""
    return CaseResponse(
        id=case.id,
        case_code=case.case_code,
        title=case.title,
        description=case.description,
        category=case.category,
        priority=case.priority,
        status=case.status,
        assigned_to=case.assigned_to,
        assigned_to_name=case.assignee.name if case.assignee else None,
        created_by=case.created_by,
        created_by_name=case.creator.name if case.creator else None,
        sla_due_at=as_utc(case.sla_due_at) if case.sla_due_at else None,
        sla_status=(
            str(classify(now, case.sla_due_at, case.priority, case.status, consumer))
            if now is not None
            else None
        ),
        hours_remaining=(
            round(hours_remaining(now, case.sla_due_at), 2)
            if now is not None and case.sla_due_at is not None
            else None
        ),
        created_at=as_utc(case.created_at),
        updated_at=as_utc(case.updated_at),
        available_transitions=(
            [str(s) for s in get_available_transitions(case.status, viewer_role)]
            if viewer_role is not None
            else None
        ),
    )


def _not_found(what: str) -> OperationResult[Any]:
    return OperationResult.rejected(RejectionKind.NOT_FOUND, f"{what} not found")


def _check_choices(
    *, category: str | None = None, priority: str | None = None
) -> OperationResult[Any] | None:
    errors = [
        f"{field} must be one of {sorted(allowed)}"
        for field, value, allowed in (
            ("category", category, CASE_CATEGORY_VALUES),
            ("priority", priority, CASE_PRIORITY_VALUES),
        )
        if value is not None and value not in allowed
    ]
    if errors:
        return OperationResult.rejected(
            RejectionKind.REQUIREMENT_UNMET, "Invalid case fields", tuple(errors)
        )
    return None


def create_case(
    actor_id: int,
    title: str,
    category: str,
    priority: str,
    description: str | None = None,
    *,
    clock: Clock | None = None,
    config: dict[str, Any] | None = None,
) -> OperationResult[CaseResponse]:
    """Open a case in Created with its SLA deadline counted from now. Audited."""
    clock = clock or SystemClock()
    _, prefix = workflow_settings(config)
    invalid = _check_choices(category=category, priority=priority)
    if invalid is not None:
        return invalid
    category = Category(category).value
    priority = Priority(priority).value

    with session_scope() as session:
        actor = UserDirectory(session).get(actor_id)
        if actor is None:
            return _not_found("User")
        now = as_utc(clock.now())
        case = CaseRepository(session).add(
            Case(
                title=title,
                description=description,
                category=category,
                priority=priority,
                status=CaseStatus.CREATED.value,
                created_by=actor.id,
                sla_due_at=due_at(priority, now),
                created_at=now,
                updated_at=now,
            ),
            code_prefix=prefix,
        )
        entry = AuditLedger(session, clock).log_case_created(
            case.id, actor.id, {"title": title, "category": category, "priority": priority}
        )
        logger.info("Case %s created (id=%s) by user %s", case.case_code, case.id, actor.id)
        return OperationResult(
            value=case_to_response(case, now=now, viewer_role=actor.role),
            audit_entry_ids=(entry.id,),
        )


def transition_case(
    case_id: int,
    target_status: str,
    actor_id: int,
    *,
    clock: Clock | None = None,
    config: dict[str, Any] | None = None,
) -> OperationResult[CaseResponse]:
    """Move a case along the lifecycle graph if the actor's role and the case data allow it."""
    clock = clock or SystemClock()
    attempts, _ = workflow_settings(config)

    def _attempt(session: Session) -> OperationResult[CaseResponse]:
        actor = UserDirectory(session).get(actor_id)
        if actor is None:
            return _not_found("User")
        cases = CaseRepository(session)
        case = cases.get(case_id)
        if case is None:
            return _not_found("Case")
        previous_status = case.status

        decision = can_transition(previous_status, target_status, actor.role)
        if not decision.allowed:
            logger.info(
                "Transition %s -> %s on case %s denied (%s)",
                previous_status,
                target_status,
                case_id,
                decision.kind,
            )
            return OperationResult(rejection=Rejection.from_decision(decision))
        errors = validate_transition_requirements(case, target_status)
        if errors:
            return OperationResult.rejected(
                RejectionKind.REQUIREMENT_UNMET,
                "Transition requirements not met",
                tuple(errors),
            )

        now = as_utc(clock.now())
        case = cases.update(
            case_id,
            {"status": CaseStatus(target_status).value, "updated_at": now},
            expected_status=previous_status,
        )
        entry = AuditLedger(session, clock).log_status_change(
            case_id, previous_status, case.status, actor.id
        )
        logger.info(
            "Case %s transitioned %s -> %s by user %s",
            case_id,
            previous_status,
            case.status,
            actor.id,
        )
        return OperationResult(
            value=case_to_response(case, now=now, viewer_role=actor.role),
            audit_entry_ids=(entry.id,),
        )

    return run_in_transaction(_attempt, attempts=attempts, label="transition", case_id=case_id)


def update_case_details(
    case_id: int,
    actor_id: int,
    *,
    title: str | None = None,
    description: str | None = None,
    category: str | None = None,
    priority: str | None = None,
    clock: Clock | None = None,
    config: dict[str, Any] | None = None,
) -> OperationResult[CaseResponse]:
    """Edit title, description, category or priority.

    Allowed for the creator, the assignee, managers and admins. A priority
    change restarts the SLA window from the edit time.
    """
    clock = clock or SystemClock()
    attempts, _ = workflow_settings(config)
    invalid = _check_choices(category=category, priority=priority)
    if invalid is not None:
        return invalid

    def _attempt(session: Session) -> OperationResult[CaseResponse]:
        actor = UserDirectory(session).get(actor_id)
        if actor is None:
            return _not_found("User")
        cases = CaseRepository(session)
        case = cases.get(case_id)
        if case is None:
            return _not_found("Case")
        if not _can_edit(case, actor):
            return OperationResult.rejected(
                RejectionKind.FORBIDDEN, "You do not have permission to edit this case"
            )

        now = as_utc(clock.now())
        fields: dict[str, Any] = {}
        changes: dict[str, Any] = {}
        if title is not None and title != case.title:
            fields["title"] = title
            changes["title"] = {"old": case.title, "new": title}
        if description is not None and description != case.description:
            fields["description"] = description
            changes["description"] = {"old": case.description, "new": description}
        if category is not None and category != case.category:
            fields["category"] = Category(category).value
            changes["category"] = {"old": case.category, "new": fields["category"]}
        if priority is not None and priority != case.priority:
            fields["priority"] = Priority(priority).value
            new_due = due_at(fields["priority"], now)
            fields["sla_due_at"] = new_due
            changes["priority"] = {"old": case.priority, "new": fields["priority"]}
            changes["sla_due_at"] = {
                "old": as_utc(case.sla_due_at).isoformat() if case.sla_due_at else None,
                "new": new_due.isoformat(),
            }
        if not fields:
            return OperationResult.rejected(RejectionKind.REQUIREMENT_UNMET, "No fields to update")
        fields["updated_at"] = now

        case = cases.update(case_id, fields, expected_status=case.status)
        entry = AuditLedger(session, clock).log_case_update(
            case_id, actor.id, {"changes": changes}
        )
        logger.info("Case %s updated by user %s: %s", case_id, actor.id, sorted(changes))
        return OperationResult(
            value=case_to_response(case, now=now, viewer_role=actor.role),
            audit_entry_ids=(entry.id,),
        )

    return run_in_transaction(_attempt, attempts=attempts, label="update", case_id=case_id)


def _can_edit(case: Case, actor: User) -> bool:
    return (
        case.created_by == actor.id
        or case.assigned_to == actor.id
        or actor.role in MANAGER_ROLES
    )


def add_comment(
    case_id: int,
    actor_id: int,
    text: str,
    *,
    clock: Clock | None = None,
) -> OperationResult[CommentResponse]:
    """Attach a comment to a case. Audited."""
    clock = clock or SystemClock()
    with session_scope() as session:
        actor = UserDirectory(session).get(actor_id)
        if actor is None:
            return _not_found("User")
        if CaseRepository(session).get(case_id) is None:
            return _not_found("Case")
        comment = CaseComment(
            case_id=case_id, comment=text, created_by=actor.id, created_at=as_utc(clock.now())
        )
        session.add(comment)
        session.flush()
        entry = AuditLedger(session, clock).log_comment_added(
            case_id, actor.id, {"comment_id": comment.id}
        )
        return OperationResult(
            value=_comment_to_response(comment, actor), audit_entry_ids=(entry.id,)
        )


def _comment_to_response(comment: CaseComment, author: User) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        case_id=comment.case_id,
        comment=comment.comment,
        created_by=comment.created_by,
        created_by_name=author.name,
        created_by_role=author.role,
        created_at=as_utc(comment.created_at),
    )


def list_comments(case_id: int) -> OperationResult[list[CommentResponse]]:
    """Comments for a case, newest first."""
    with session_scope() as session:
        case = CaseRepository(session).get(case_id)
        if case is None:
            return _not_found("Case")
        comments = sorted(case.comments, key=lambda c: (as_utc(c.created_at), c.id), reverse=True)
        return OperationResult(value=[_comment_to_response(c, c.author) for c in comments])


def get_case(
    case_id: int, viewer_id: int, *, clock: Clock | None = None
) -> OperationResult[CaseResponse]:
    """Case detail with SLA status and the transitions the viewer may take."""
    clock = clock or SystemClock()
    with session_scope() as session:
        viewer = UserDirectory(session).get(viewer_id)
        if viewer is None:
            return _not_found("User")
        case = CaseRepository(session).get(case_id)
        if case is None:
            return _not_found("Case")
        return OperationResult(
            value=case_to_response(case, now=as_utc(clock.now()), viewer_role=viewer.role)
        )


def list_cases(
    viewer_id: int,
    *,
    status: str | None = None,
    priority: str | None = None,
    category: str | None = None,
    page: int = 1,
    limit: int = 20,
    clock: Clock | None = None,
) -> OperationResult[tuple[list[CaseResponse], int]]:
    """Role-scoped page of cases (case-list SLA vocabulary) and the total match count."""
    clock = clock or SystemClock()
    with session_scope() as session:
        viewer = UserDirectory(session).get(viewer_id)
        if viewer is None:
            return _not_found("User")
        rows, total = CaseRepository(session).list_cases(
            status=status,
            priority=priority,
            category=category,
            visible_to=viewer,
            limit=limit,
            offset=(page - 1) * limit,
        )
        now = as_utc(clock.now())
        return OperationResult(value=([case_to_response(c, now=now) for c in rows], total))


def get_audit_trail(case_id: int) -> OperationResult[list[AuditTrailEntry]]:
    """Audit trail for a case, newest first."""
    with session_scope() as session:
        if CaseRepository(session).get(case_id) is None:
            return _not_found("Case")
        return OperationResult(value=AuditLedger(session).get_trail(case_id))
