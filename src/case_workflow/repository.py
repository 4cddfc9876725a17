"""Session-bound case repository and user directory."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import case as sql_case
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from case_workflow.case_lifecycle import Role
from case_workflow.errors import ConflictError
from case_workflow.models import Case, User

_UNSET: Any = object()

_PRIORITY_RANK = sql_case(
    {"Critical": 1, "High": 2, "Medium": 3},
    value=Case.priority,
    else_=4,
)

CASE_CODE_SEQUENCE_START = 1000


def format_case_code(prefix: str, case_id: int) -> str:
    """Human-readable code, e.g. CASE-01000 for the first case."""
    return f"{prefix}-{CASE_CODE_SEQUENCE_START + case_id - 1:05d}"


class CaseRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, case_id: int) -> Case | None:
        return self._session.get(Case, case_id, populate_existing=True)

    def add(self, case: Case, code_prefix: str) -> Case:
        self._session.add(case)
        self._session.flush()
        case.case_code = format_case_code(code_prefix, case.id)
        self._session.flush()
        return case

    def update(
        self,
        case_id: int,
        fields: dict[str, Any],
        *,
        expected_status: str | None = None,
        expected_assignee: Any = _UNSET,
    ) -> Case:
        """Write ``fields`` only if the row still has the status/assignee read at decision time.

        Raises ConflictError when the guarded row no longer matches.
        """
        stmt = update(Case).where(Case.id == case_id)
        expected: dict[str, object] = {}
        if expected_status is not None:
            stmt = stmt.where(Case.status == expected_status)
            expected["status"] = expected_status
        if expected_assignee is not _UNSET:
            if expected_assignee is None:
                stmt = stmt.where(Case.assigned_to.is_(None))
            else:
                stmt = stmt.where(Case.assigned_to == expected_assignee)
            expected["assigned_to"] = expected_assignee
        result = self._session.execute(
            stmt.values(**fields).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(case_id, expected)
        case = self._session.get(Case, case_id)
        if case is None:
            raise ConflictError(case_id, expected)
        self._session.refresh(case)
        return case

    def list_cases(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        visible_to: User | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Case], int]:
        """Filtered page of cases plus the total count.

        Requesters see cases they created, analysts see cases assigned to them or
        created by them, managers and admins see everything.
        """
        stmt = select(Case)
        if visible_to is not None:
            if visible_to.role == Role.REQUESTER:
                stmt = stmt.where(Case.created_by == visible_to.id)
            elif visible_to.role == Role.ANALYST:
                stmt = stmt.where(
                    (Case.assigned_to == visible_to.id) | (Case.created_by == visible_to.id)
                )
        if status is not None:
            stmt = stmt.where(Case.status == status)
        if priority is not None:
            stmt = stmt.where(Case.priority == priority)
        if category is not None:
            stmt = stmt.where(Case.category == category)
        total = self._session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        stmt = stmt.order_by(_PRIORITY_RANK, Case.created_at.desc(), Case.id.desc())
        rows = self._session.execute(stmt.limit(limit).offset(offset)).scalars()
        return list(rows), total

    def open_cases(self, statuses: Sequence[str] | None = None) -> list[Case]:
        stmt = select(Case).where(Case.status != "Closed")
        if statuses:
            stmt = stmt.where(Case.status.in_(list(statuses)))
        return list(self._session.execute(stmt.order_by(Case.sla_due_at)).scalars())


class UserDirectory:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, user_id: int) -> User | None:
        return self._session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        return self._session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        ).scalar_one_or_none()

    def add(self, name: str, email: str, role: str) -> User:
        user = User(name=name, email=email.strip().lower(), role=Role(role).value)
        self._session.add(user)
        self._session.flush()
        return user

    def list_users(self, role: str | None = None) -> list[User]:
        stmt = select(User)
        if role is not None:
            stmt = stmt.where(User.role == role)
        stmt = stmt.order_by(User.created_at.desc(), User.id)
        return list(self._session.execute(stmt).scalars())

    def analysts(self) -> list[User]:
        stmt = select(User).where(User.role == Role.ANALYST.value).order_by(User.name)
        return list(self._session.execute(stmt).scalars())

    def update(self, user_id: int, fields: dict[str, Any]) -> User | None:
        """Apply name/email/role edits; emails are stored lowercased."""
        user = self.get(user_id)
        if user is None:
            return None
        if "email" in fields:
            fields = {**fields, "email": fields["email"].strip().lower()}
        if "role" in fields:
            fields = {**fields, "role": Role(fields["role"]).value}
        for key, value in fields.items():
            setattr(user, key, value)
        self._session.flush()
        return user
