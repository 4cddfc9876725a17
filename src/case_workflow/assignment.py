"""Case assignment: analyst-only assignees, auto-advance from Created, one transaction."""

from __future__ import annotations

from logging import getLogger
from typing import Any

from sqlalchemy.orm import Session

from case_workflow.audit import AUTO_TRANSITION_REASON, AuditLedger
from case_workflow.case_lifecycle import MANAGER_ROLES, CaseStatus, Role, can_assign
from case_workflow.clock import Clock, SystemClock, as_utc
from case_workflow.config import workflow_settings
from case_workflow.db import run_in_transaction
from case_workflow.errors import OperationResult, RejectionKind
from case_workflow.repository import CaseRepository, UserDirectory
from case_workflow.schemas import CaseResponse
from case_workflow.workflow import case_to_response

logger = getLogger(__name__)


def assign_case(
    case_id: int,
    assignee_id: int,
    actor_id: int,
    *,
    clock: Clock | None = None,
    config: dict[str, Any] | None = None,
) -> OperationResult[CaseResponse]:
    """Assign a case to an analyst.

    Only managers and admins may assign. A case still in Created moves to
    Assigned as part of the same write; that move is gated by this function's
    own role check rather than the transition graph. The ledger gets an
    assignment entry and, when the status moved, a status-change entry marked
    as automatic. Re-assignment of a case past Created changes only the
    assignee and writes one entry.
    """
    clock = clock or SystemClock()
    attempts, _ = workflow_settings(config)

    def _attempt(session: Session) -> OperationResult[CaseResponse]:
        users = UserDirectory(session)
        actor = users.get(actor_id)
        if actor is None:
            return OperationResult.rejected(RejectionKind.NOT_FOUND, "User not found")
        if actor.role not in MANAGER_ROLES:
            return OperationResult.rejected(
                RejectionKind.FORBIDDEN,
                f"Required role: manager or admin. Your role: {actor.role}",
            )
        cases = CaseRepository(session)
        case = cases.get(case_id)
        if case is None:
            return OperationResult.rejected(RejectionKind.NOT_FOUND, "Case not found")
        assignee = users.get(assignee_id)
        if assignee is None:
            return OperationResult.rejected(RejectionKind.NOT_FOUND, "Assignee not found")
        if assignee.role != Role.ANALYST:
            return OperationResult.rejected(
                RejectionKind.ROLE_MISMATCH,
                f"Can only assign cases to analysts (user {assignee.id} is {assignee.role})",
            )

        previous_status = case.status
        previous_assignee = case.assigned_to
        auto_transition = can_assign(previous_status)
        now = as_utc(clock.now())
        fields: dict[str, Any] = {"assigned_to": assignee.id, "updated_at": now}
        if auto_transition:
            fields["status"] = CaseStatus.ASSIGNED.value
        case = cases.update(
            case_id,
            fields,
            expected_status=previous_status,
            expected_assignee=previous_assignee,
        )

        ledger = AuditLedger(session, clock)
        entries = [
            ledger.log_assignment(
                case_id,
                previous_assignee,
                assignee.id,
                actor.id,
                {"assignee_name": assignee.name},
            )
        ]
        if auto_transition:
            entries.append(
                ledger.log_status_change(
                    case_id,
                    previous_status,
                    case.status,
                    actor.id,
                    {"reason": AUTO_TRANSITION_REASON, "automatic": True},
                )
            )
        logger.info(
            "Case %s assigned to user %s by user %s (previous assignee %s, status %s -> %s)",
            case_id,
            assignee.id,
            actor.id,
            previous_assignee,
            previous_status,
            case.status,
        )
        return OperationResult(
            value=case_to_response(case, now=now, viewer_role=actor.role),
            audit_entry_ids=tuple(e.id for e in entries),
        )

    return run_in_transaction(_attempt, attempts=attempts, label="assign", case_id=case_id)
