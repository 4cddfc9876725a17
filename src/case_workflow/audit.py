"""Append-only case audit ledger with a SHA-256 hash chain (tamper evidence)."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from logging import getLogger
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from case_workflow.audit_context import get_correlation_id
from case_workflow.clock import Clock, SystemClock, as_utc
from case_workflow.errors import AuditImmutableError
from case_workflow.models import Case, CaseAuditLog, User

logger = getLogger(__name__)


class AuditAction(StrEnum):
    CASE_CREATED = "CASE_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    CASE_ASSIGNED = "CASE_ASSIGNED"
    CASE_UPDATED = "CASE_UPDATED"
    COMMENT_ADDED = "COMMENT_ADDED"


AUTO_TRANSITION_REASON = "Auto-transitioned on assignment"


@dataclass(frozen=True)
class AuditTrailEntry:
    """Read-only view of one audit entry, with the performer's display identity."""

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


@dataclass(frozen=True)
class ChainVerification:
    ok: bool
    checked: int
    first_broken_id: int | None = None


def _audit_row_canonical(row: CaseAuditLog) -> str:
    """Canonical string for hashing (excludes id, prev_hash, row_hash)."""
    ts_str = as_utc(row.ts).isoformat() if row.ts else ""
    details = json.dumps(row.details_json or {}, sort_keys=True, default=str)
    fields = (
        row.correlation_id,
        row.case_id,
        row.action,
        row.previous_status,
        row.new_status,
        row.previous_assignee,
        row.new_assignee,
        row.performed_by,
        ts_str,
        details,
    )
    return "|".join("" if f is None else str(f) for f in fields)


def _row_hash(prev_hash: str | None, row: CaseAuditLog) -> str:
    payload = (prev_hash or "") + _audit_row_canonical(row)
    return hashlib.sha256(payload.encode()).hexdigest()


def compute_audit_chain(session: Session) -> None:
    """Set prev_hash and row_hash on new CaseAuditLog instances (before_flush hook)."""
    new_logs = [o for o in session.new if isinstance(o, CaseAuditLog)]
    if not new_logs:
        return
    stmt = select(CaseAuditLog.row_hash).order_by(CaseAuditLog.id.desc()).limit(1)
    prev_hash = session.execute(stmt).scalar_one_or_none()
    for row in new_logs:
        row.prev_hash = prev_hash
        row.row_hash = _row_hash(prev_hash, row)
        prev_hash = row.row_hash


def guard_audit_immutable(mapper, connection, target: CaseAuditLog) -> None:
    """Mapper before_update/before_delete hook: persisted entries never change."""
    raise AuditImmutableError(f"Audit entry {target.id} is append-only")


def verify_chain(session: Session) -> ChainVerification:
    """Recompute the chain in id order; report the first entry whose hashes do not match."""
    prev_hash: str | None = None
    checked = 0
    for row in session.execute(select(CaseAuditLog).order_by(CaseAuditLog.id)).scalars():
        checked += 1
        if row.prev_hash != prev_hash or row.row_hash != _row_hash(prev_hash, row):
            logger.warning("Audit chain broken at entry %s", row.id)
            return ChainVerification(ok=False, checked=checked, first_broken_id=row.id)
        prev_hash = row.row_hash
    return ChainVerification(ok=True, checked=checked)


class AuditLedger:
    """Session-bound ledger. Appends join the caller's transaction; nothing here commits."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def append(
        self,
        case_id: int,
        action: AuditAction,
        performed_by: int,
        *,
        previous_status: str | None = None,
        new_status: str | None = None,
        previous_assignee: int | None = None,
        new_assignee: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> CaseAuditLog:
        entry = CaseAuditLog(
            case_id=case_id,
            action=str(action),
            previous_status=previous_status,
            new_status=new_status,
            previous_assignee=previous_assignee,
            new_assignee=new_assignee,
            performed_by=performed_by,
            details_json=details or {},
            ts=as_utc(self._clock.now()),
            correlation_id=get_correlation_id(),
        )
        self._session.add(entry)
        # One flush per entry keeps the hash chain in append order.
        self._session.flush()
        logger.debug("Audit %s appended for case %s (entry %s)", action, case_id, entry.id)
        return entry

    def log_case_created(
        self, case_id: int, performed_by: int, details: dict[str, Any] | None = None
    ) -> CaseAuditLog:
        return self.append(
            case_id, AuditAction.CASE_CREATED, performed_by, new_status="Created", details=details
        )

    def log_status_change(
        self,
        case_id: int,
        previous_status: str,
        new_status: str,
        performed_by: int,
        details: dict[str, Any] | None = None,
    ) -> CaseAuditLog:
        return self.append(
            case_id,
            AuditAction.STATUS_CHANGED,
            performed_by,
            previous_status=previous_status,
            new_status=new_status,
            details=details,
        )

    def log_assignment(
        self,
        case_id: int,
        previous_assignee: int | None,
        new_assignee: int,
        performed_by: int,
        details: dict[str, Any] | None = None,
    ) -> CaseAuditLog:
        return self.append(
            case_id,
            AuditAction.CASE_ASSIGNED,
            performed_by,
            previous_assignee=previous_assignee,
            new_assignee=new_assignee,
            details=details,
        )

    def log_case_update(
        self, case_id: int, performed_by: int, details: dict[str, Any] | None = None
    ) -> CaseAuditLog:
        return self.append(case_id, AuditAction.CASE_UPDATED, performed_by, details=details)

    def log_comment_added(
        self, case_id: int, performed_by: int, details: dict[str, Any] | None = None
    ) -> CaseAuditLog:
        return self.append(case_id, AuditAction.COMMENT_ADDED, performed_by, details=details)

    def get_trail(self, case_id: int) -> list[AuditTrailEntry]:
        """All entries for a case, newest first."""
        stmt = (
            select(CaseAuditLog, User.name, User.email, User.role)
            .join(User, CaseAuditLog.performed_by == User.id)
            .where(CaseAuditLog.case_id == case_id)
            .order_by(CaseAuditLog.ts.desc(), CaseAuditLog.id.desc())
        )
        rows = self._session.execute(stmt)
        return [_to_trail_entry(row, name, email, role) for row, name, email, role in rows]

    def recent_activity(self, limit: int = 20) -> list[AuditTrailEntry]:
        """Latest entries across all cases, with case code and title."""
        case = aliased(Case)
        stmt = (
            select(CaseAuditLog, User.name, User.email, User.role, case.case_code, case.title)
            .join(User, CaseAuditLog.performed_by == User.id)
            .join(case, CaseAuditLog.case_id == case.id)
            .order_by(CaseAuditLog.ts.desc(), CaseAuditLog.id.desc())
            .limit(limit)
        )
        return [
            _to_trail_entry(row, name, email, role, case_code=code, case_title=title)
            for row, name, email, role, code, title in self._session.execute(stmt)
        ]


def _to_trail_entry(
    row: CaseAuditLog,
    name: str,
    email: str,
    role: str,
    case_code: str | None = None,
    case_title: str | None = None,
) -> AuditTrailEntry:
    return AuditTrailEntry(
        id=row.id,
        case_id=row.case_id,
        action=row.action,
        previous_status=row.previous_status,
        new_status=row.new_status,
        previous_assignee=row.previous_assignee,
        new_assignee=row.new_assignee,
        performed_by=row.performed_by,
        performed_by_name=name,
        performed_by_email=email,
        performed_by_role=role,
        details=dict(row.details_json) if row.details_json is not None else None,
        timestamp=as_utc(row.ts),
        correlation_id=row.correlation_id,
        case_code=case_code,
        case_title=case_title,
    )
