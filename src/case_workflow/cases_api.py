"""Cases API router: explicit registration for /cases endpoints."""

from __future__ import annotations

from math import ceil
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query

from case_workflow import workflow
from case_workflow.assignment import assign_case
from case_workflow.auth import Principal, require_role, require_user, require_write_user
from case_workflow.case_lifecycle import Role
from case_workflow.config import get_config
from case_workflow.errors import OperationResult, Rejection, RejectionKind
from case_workflow.schemas import (
    AuditEntryResponse,
    CaseAssignRequest,
    CaseCreateRequest,
    CaseListResponse,
    CaseResponse,
    CaseStatusRequest,
    CaseUpdateRequest,
    CommentRequest,
    CommentResponse,
)

cases_router = APIRouter(tags=["cases"])

_STATUS_BY_KIND = {
    RejectionKind.REQUIREMENT_UNMET: 400,
    RejectionKind.ROLE_MISMATCH: 400,
    RejectionKind.FORBIDDEN: 403,
    RejectionKind.NOT_FOUND: 404,
    RejectionKind.CONFLICT: 409,
}

_require_manager = require_role(Role.MANAGER, Role.ADMIN)
_require_manager_write = require_role(Role.MANAGER, Role.ADMIN, write=True)


def raise_for_rejection(rejection: Rejection) -> NoReturn:
    """Map a workflow rejection to the HTTP error clients see."""
    if rejection.is_policy_violation:
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Invalid transition",
                "reason": rejection.message,
                "kind": str(rejection.kind),
            },
        )
    detail: Any = rejection.message
    if rejection.errors:
        detail = {"error": rejection.message, "errors": list(rejection.errors)}
    raise HTTPException(status_code=_STATUS_BY_KIND[rejection.kind], detail=detail)


def _unwrap(result: OperationResult[Any]) -> Any:
    if result.rejection is not None:
        raise_for_rejection(result.rejection)
    return result.value


@cases_router.post("/cases", response_model=CaseResponse, status_code=201)
def create_case(
    body: CaseCreateRequest, user: Principal = Depends(require_write_user)
) -> CaseResponse:
    """Open a case in Created. Audited."""
    return _unwrap(
        workflow.create_case(
            user.id, body.title, body.category, body.priority, body.description
        )
    )


@cases_router.get("/cases", response_model=CaseListResponse)
def list_cases(
    status: str | None = Query(None),
    priority: str | None = Query(None),
    category: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1, le=100),
    user: Principal = Depends(require_user),
) -> CaseListResponse:
    """Cases visible to the caller, most urgent priority first."""
    if limit is None:
        limit = int(get_config().get("cases", {}).get("page_size", 20))
    cases, total = _unwrap(
        workflow.list_cases(
            user.id,
            status=status,
            priority=priority,
            category=category,
            page=page,
            limit=limit,
        )
    )
    return CaseListResponse(
        cases=cases, page=page, limit=limit, total=total, total_pages=ceil(total / limit)
    )


@cases_router.get("/cases/{case_id}", response_model=CaseResponse)
def get_case(case_id: int, user: Principal = Depends(require_user)) -> CaseResponse:
    """Case detail with SLA status and the transitions available to the caller."""
    return _unwrap(workflow.get_case(case_id, user.id))


@cases_router.put("/cases/{case_id}", response_model=CaseResponse)
def update_case(
    case_id: int, body: CaseUpdateRequest, user: Principal = Depends(require_write_user)
) -> CaseResponse:
    """Edit case details. A priority change restarts the SLA window. Audited."""
    return _unwrap(
        workflow.update_case_details(
            case_id,
            user.id,
            title=body.title,
            description=body.description,
            category=body.category,
            priority=body.priority,
        )
    )


@cases_router.put("/cases/{case_id}/status", response_model=CaseResponse)
def change_status(
    case_id: int, body: CaseStatusRequest, user: Principal = Depends(require_write_user)
) -> CaseResponse:
    """Move the case along the lifecycle graph. Audited."""
    return _unwrap(workflow.transition_case(case_id, body.status, user.id))


@cases_router.put("/cases/{case_id}/assign", response_model=CaseResponse)
def assign(
    case_id: int,
    body: CaseAssignRequest,
    user: Principal = Depends(_require_manager_write),
) -> CaseResponse:
    """Assign to an analyst; a Created case moves to Assigned. Audited."""
    return _unwrap(assign_case(case_id, body.assignee_id, user.id))


@cases_router.post("/cases/{case_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    case_id: int, body: CommentRequest, user: Principal = Depends(require_write_user)
) -> CommentResponse:
    return _unwrap(workflow.add_comment(case_id, user.id, body.comment))


@cases_router.get("/cases/{case_id}/comments", response_model=list[CommentResponse])
def list_comments(case_id: int, _user: Principal = Depends(require_user)) -> list[CommentResponse]:
    return _unwrap(workflow.list_comments(case_id))


@cases_router.get("/cases/{case_id}/audit", response_model=list[AuditEntryResponse])
def get_audit_trail(
    case_id: int, _user: Principal = Depends(_require_manager)
) -> list[AuditEntryResponse]:
    """Audit trail for the case, newest first."""
    entries = _unwrap(workflow.get_audit_trail(case_id))
    return [AuditEntryResponse.model_validate(e) for e in entries]
