"""FastAPI app: cases, users, dashboard."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from logging import getLogger
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from case_workflow import ENGINE_VERSION, dashboard
from case_workflow.audit_context import set_audit_context
from case_workflow.auth import Principal, require_role, require_user
from case_workflow.case_lifecycle import Role
from case_workflow.cases_api import cases_router, raise_for_rejection
from case_workflow.config import get_config
from case_workflow.db import get_engine, init_db, session_scope
from case_workflow.logging_config import setup_logging
from case_workflow.repository import UserDirectory
from case_workflow.schemas import (
    AnalystWorkload,
    AuditEntryResponse,
    DashboardSummary,
    PendingActions,
    ResolutionTime,
    SlaBreachReport,
    UserCreateRequest,
    UserResponse,
    UserUpdateRequest,
)

logger = getLogger(__name__)

_require_manager = require_role(Role.MANAGER, Role.ADMIN)
_require_admin_write = require_role(Role.ADMIN, write=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    db_url = config.get("database", {}).get("url", "sqlite:///./data/cases.db")
    echo = config.get("database", {}).get("echo", False)
    init_db(db_url, echo=echo)
    yield


app = FastAPI(title="Case Workflow API", version=ENGINE_VERSION, lifespan=lifespan)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Set correlation_id per request; echo X-Correlation-ID in response.
    The acting user comes from the API key, never from a request header.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_audit_context(correlation_id)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


app.add_middleware(AuditContextMiddleware)

app.include_router(cases_router)


@app.get("/health")
def health() -> dict[str, Any]:
    """Liveness and version; db_status indicates DB connectivity."""
    db_status = "ok"
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError):
        db_status = "error"
    return {"status": "ok", "engine_version": ENGINE_VERSION, "db_status": db_status}


# --- Users ---
@app.get("/users", response_model=list[UserResponse])
def list_users(
    role: str | None = Query(None), _user: Principal = Depends(_require_manager)
) -> list[UserResponse]:
    with session_scope() as session:
        return [UserResponse.model_validate(u) for u in UserDirectory(session).list_users(role)]


@app.get("/users/analysts", response_model=list[UserResponse])
def list_analysts(_user: Principal = Depends(_require_manager)) -> list[UserResponse]:
    """Assignment candidates, by name."""
    with session_scope() as session:
        return [UserResponse.model_validate(u) for u in UserDirectory(session).analysts()]


@app.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int, _user: Principal = Depends(_require_manager)) -> UserResponse:
    with session_scope() as session:
        user = UserDirectory(session).get(user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return UserResponse.model_validate(user)


@app.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    body: UserCreateRequest, _user: Principal = Depends(_require_admin_write)
) -> UserResponse:
    """Register a directory user (admin only). Emails are unique, case-insensitively."""
    with session_scope() as session:
        users = UserDirectory(session)
        if users.get_by_email(body.email) is not None:
            raise HTTPException(status_code=409, detail="Email already registered")
        return UserResponse.model_validate(users.add(body.name, body.email, body.role))


@app.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int, body: UserUpdateRequest, _user: Principal = Depends(_require_admin_write)
) -> UserResponse:
    """Edit a user's name, email or role (admin only)."""
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    with session_scope() as session:
        users = UserDirectory(session)
        if users.get(user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        if "email" in fields:
            other = users.get_by_email(fields["email"])
            if other is not None and other.id != user_id:
                raise HTTPException(status_code=409, detail="Email already registered")
        user = users.update(user_id, fields)
        logger.info("User %s updated: %s", user_id, sorted(fields))
        return UserResponse.model_validate(user)


# --- Dashboard ---
@app.get("/dashboard/summary", response_model=DashboardSummary)
def dashboard_summary(_user: Principal = Depends(require_user)) -> DashboardSummary:
    return dashboard.summary()


@app.get("/dashboard/sla-breaches", response_model=SlaBreachReport)
def dashboard_sla_breaches(_user: Principal = Depends(_require_manager)) -> SlaBreachReport:
    """Open cases breached or due within 24 hours."""
    return dashboard.sla_breaches()


@app.get("/dashboard/resolution-times", response_model=list[ResolutionTime])
def dashboard_resolution_times(
    _user: Principal = Depends(_require_manager),
) -> list[ResolutionTime]:
    return dashboard.resolution_times()


@app.get("/dashboard/analyst-workload", response_model=list[AnalystWorkload])
def dashboard_analyst_workload(
    _user: Principal = Depends(_require_manager),
) -> list[AnalystWorkload]:
    return dashboard.analyst_workload()


@app.get("/dashboard/recent-activity", response_model=list[AuditEntryResponse])
def dashboard_recent_activity(
    limit: int = Query(20, ge=1, le=100), _user: Principal = Depends(require_user)
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in dashboard.recent_activity(limit)]


@app.get("/dashboard/my-pending-actions", response_model=PendingActions)
def dashboard_my_pending_actions(user: Principal = Depends(require_user)) -> PendingActions:
    """Cases waiting on the caller, by role."""
    result = dashboard.my_pending_actions(user.id)
    if result.rejection is not None:
        raise_for_rejection(result.rejection)
    return result.value
