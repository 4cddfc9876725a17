"""Pydantic v2 schemas for API and validation."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from case_workflow.case_lifecycle import (
    CASE_CATEGORY_VALUES,
    CASE_PRIORITY_VALUES,
    CASE_STATUS_VALUES,
    ROLE_VALUES,
)


def _check_enum(value: str | None, allowed: frozenset[str], field: str) -> str | None:
    if value is not None and value not in allowed:
        raise ValueError(f"{field} must be one of {sorted(allowed)}")
    return value


# --- Users ---
class UserCreateRequest(BaseModel):
    """Body for POST /users."""

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("role")
    @classmethod
    def role_enum(cls, v: str) -> str:
        return _check_enum(v, ROLE_VALUES, "role") or v


class UserUpdateRequest(BaseModel):
    """Body for PUT /users/{id}. Only provided fields are updated."""

    name: str | None = Field(None, max_length=100)
    email: str | None = Field(None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("role")
    @classmethod
    def role_enum(cls, v: str | None) -> str | None:
        return _check_enum(v, ROLE_VALUES, "role")


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Cases ---
class CaseCreateRequest(BaseModel):
    """Body for POST /cases."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: str
    priority: str

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("category")
    @classmethod
    def category_enum(cls, v: str) -> str:
        return _check_enum(v, CASE_CATEGORY_VALUES, "category") or v

    @field_validator("priority")
    @classmethod
    def priority_enum(cls, v: str) -> str:
        return _check_enum(v, CASE_PRIORITY_VALUES, "priority") or v


class CaseUpdateRequest(BaseModel):
    """Body for PUT /cases/{id}. Only provided fields are updated."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = None
    priority: str | None = None

    @field_validator("category")
    @classmethod
    def category_enum(cls, v: str | None) -> str | None:
        return _check_enum(v, CASE_CATEGORY_VALUES, "category")

    @field_validator("priority")
    @classmethod
    def priority_enum(cls, v: str | None) -> str | None:
        return _check_enum(v, CASE_PRIORITY_VALUES, "priority")

    @model_validator(mode="after")
    def at_least_one_field(self) -> CaseUpdateRequest:
        if all(
            v is None for v in (self.title, self.description, self.category, self.priority)
        ):
            raise ValueError("No fields to update")
        return self


class CaseStatusRequest(BaseModel):
    """Body for PUT /cases/{id}/status."""

    status: str

    @field_validator("status")
    @classmethod
    def status_enum(cls, v: str) -> str:
        return _check_enum(v, CASE_STATUS_VALUES, "status") or v


class CaseAssignRequest(BaseModel):
    """Body for PUT /cases/{id}/assign."""

    assignee_id: int = Field(..., alias="assigneeId")

    model_config = {"populate_by_name": True}


class CommentRequest(BaseModel):
    """Body for POST /cases/{id}/comments."""

    comment: str = Field(..., min_length=1)

    @field_validator("comment")
    @classmethod
    def comment_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment is required")
        return v


class CommentResponse(BaseModel):
    id: int
    case_id: int
    comment: str
    created_by: int
    created_by_name: str | None = None
    created_by_role: str | None = None
    created_at: datetime


class CaseResponse(BaseModel):
    id: int
    case_code: str | None
    title: str
    description: str | None
    category: str
    priority: str
    status: str
    assigned_to: int | None
    assigned_to_name: str | None = None
    created_by: int
    created_by_name: str | None = None
    sla_due_at: datetime | None
    sla_status: str | None = None
    hours_remaining: float | None = None
    created_at: datetime
    updated_at: datetime
    available_transitions: list[str] | None = None


class CaseListResponse(BaseModel):
    cases: list[CaseResponse]
    page: int
    limit: int
    total: int
    total_pages: int


class AuditEntryResponse(BaseModel):
    id: int
    case_id: int
    action: str
    previous_status: str | None
    new_status: str | None
    previous_assignee: int | None
    new_assignee: int | None
    performed_by: int
    performed_by_name: str
    performed_by_email: str
    performed_by_role: str
    details: dict[str, Any] | None
    timestamp: datetime
    correlation_id: str | None
    case_code: str | None = None
    case_title: str | None = None

    model_config = {"from_attributes": True}


# --- Dashboard ---
class DashboardSummary(BaseModel):
    total: int
    open: int
    closed: int
    created_this_week: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_category: dict[str, int]


class SlaBreachReport(BaseModel):
    breached: int
    at_risk: int
    cases: list[CaseResponse]


class AnalystWorkload(BaseModel):
    id: int
    name: str
    email: str
    total_assigned: int
    pending: int
    in_progress: int
    under_review: int


class ResolutionTime(BaseModel):
    category: str
    closed_count: int
    avg_hours: float
    min_hours: float
    max_hours: float


class PendingActions(BaseModel):
    pending_cases: list[CaseResponse]
    pending_reviews: list[CaseResponse]
    total_pending: int
