"""Read-only dashboard aggregates over cases and the audit ledger."""

from __future__ import annotations

from datetime import timedelta
from logging import getLogger

from sqlalchemy import func, select

from case_workflow.audit import AuditLedger, AuditTrailEntry
from case_workflow.case_lifecycle import MANAGER_ROLES, CaseStatus, Role
from case_workflow.clock import Clock, SystemClock, as_utc
from case_workflow.db import session_scope
from case_workflow.errors import OperationResult, RejectionKind
from case_workflow.models import Case, User
from case_workflow.repository import CaseRepository, UserDirectory
from case_workflow.schemas import (
    AnalystWorkload,
    DashboardSummary,
    PendingActions,
    ResolutionTime,
    SlaBreachReport,
)
from case_workflow.sla import SlaConsumer, SlaStatus
from case_workflow.workflow import case_to_response

logger = getLogger(__name__)

# Open cases due within this horizon (or already past due) appear on the breach report.
BREACH_HORIZON = timedelta(hours=24)


def summary(*, clock: Clock | None = None) -> DashboardSummary:
    """Counts by status and category; priority counts cover open cases only."""
    clock = clock or SystemClock()
    week_ago = as_utc(clock.now()) - timedelta(days=7)
    closed = CaseStatus.CLOSED.value
    with session_scope() as session:
        by_status = dict(
            session.execute(select(Case.status, func.count()).group_by(Case.status)).all()
        )
        by_priority = dict(
            session.execute(
                select(Case.priority, func.count())
                .where(Case.status != closed)
                .group_by(Case.priority)
            ).all()
        )
        by_category = dict(
            session.execute(select(Case.category, func.count()).group_by(Case.category)).all()
        )
        created_this_week = session.execute(
            select(func.count()).select_from(Case).where(Case.created_at >= week_ago)
        ).scalar_one()
    total = sum(by_status.values())
    closed_count = by_status.get(closed, 0)
    return DashboardSummary(
        total=total,
        open=total - closed_count,
        closed=closed_count,
        created_this_week=created_this_week,
        by_status=by_status,
        by_priority=by_priority,
        by_category=by_category,
    )


def sla_breaches(*, clock: Clock | None = None) -> SlaBreachReport:
    """Open cases past due or due within the next 24 hours, earliest deadline first.

    Uses the dashboard vocabulary, so a missed deadline reads ``breached``.
    """
    clock = clock or SystemClock()
    now = as_utc(clock.now())
    horizon = now + BREACH_HORIZON
    with session_scope() as session:
        cases = [
            case_to_response(c, now=now, consumer=SlaConsumer.DASHBOARD)
            for c in CaseRepository(session).open_cases()
            if c.sla_due_at is not None and as_utc(c.sla_due_at) < horizon
        ]
    breached = sum(1 for c in cases if c.sla_status == SlaStatus.BREACHED)
    at_risk = sum(1 for c in cases if c.sla_status == SlaStatus.AT_RISK)
    logger.info("SLA report: %d breached, %d at risk", breached, at_risk)
    return SlaBreachReport(breached=breached, at_risk=at_risk, cases=cases)


def resolution_times() -> list[ResolutionTime]:
    """Hours from creation to last update of closed cases, per category, slowest first."""
    with session_scope() as session:
        rows = session.execute(
            select(Case.category, Case.created_at, Case.updated_at).where(
                Case.status == CaseStatus.CLOSED.value
            )
        ).all()
    hours: dict[str, list[float]] = {}
    for category, created_at, updated_at in rows:
        elapsed = as_utc(updated_at) - as_utc(created_at)
        hours.setdefault(category, []).append(elapsed.total_seconds() / 3600)
    report = [
        ResolutionTime(
            category=category,
            closed_count=len(values),
            avg_hours=round(sum(values) / len(values), 2),
            min_hours=round(min(values), 2),
            max_hours=round(max(values), 2),
        )
        for category, values in hours.items()
    ]
    return sorted(report, key=lambda r: r.avg_hours, reverse=True)


def analyst_workload() -> list[AnalystWorkload]:
    """Open cases per analyst, busiest first. Analysts with nothing assigned are included."""
    with session_scope() as session:
        counts: dict[int, dict[str, int]] = {}
        for assignee, status, n in session.execute(
            select(Case.assigned_to, Case.status, func.count())
            .where(Case.assigned_to.is_not(None), Case.status != CaseStatus.CLOSED.value)
            .group_by(Case.assigned_to, Case.status)
        ):
            counts.setdefault(assignee, {})[status] = n
        analysts = UserDirectory(session).analysts()
        report = [_workload_row(a, counts.get(a.id, {})) for a in analysts]
    return sorted(report, key=lambda w: w.total_assigned, reverse=True)


def _workload_row(analyst: User, by_status: dict[str, int]) -> AnalystWorkload:
    return AnalystWorkload(
        id=analyst.id,
        name=analyst.name,
        email=analyst.email,
        total_assigned=sum(by_status.values()),
        pending=by_status.get(CaseStatus.ASSIGNED.value, 0),
        in_progress=by_status.get(CaseStatus.IN_PROGRESS.value, 0),
        under_review=by_status.get(CaseStatus.UNDER_REVIEW.value, 0),
    )


def recent_activity(limit: int = 20) -> list[AuditTrailEntry]:
    with session_scope() as session:
        return AuditLedger(session).recent_activity(limit)


def my_pending_actions(
    viewer_id: int, *, clock: Clock | None = None
) -> OperationResult[PendingActions]:
    """Cases waiting on the viewer.

    Analysts: their Assigned and In Progress cases. Managers and admins:
    unassigned (Created) cases plus everything Under Review. Requesters: their
    own open cases, most recently updated first.
    """
    clock = clock or SystemClock()
    now = as_utc(clock.now())
    with session_scope() as session:
        viewer = UserDirectory(session).get(viewer_id)
        if viewer is None:
            return OperationResult.rejected(RejectionKind.NOT_FOUND, "User not found")
        cases = CaseRepository(session)
        reviews: list[Case] = []
        if viewer.role == Role.ANALYST:
            pending = [
                c
                for c in cases.open_cases(
                    [CaseStatus.ASSIGNED.value, CaseStatus.IN_PROGRESS.value]
                )
                if c.assigned_to == viewer.id
            ]
        elif viewer.role in MANAGER_ROLES:
            pending = cases.open_cases([CaseStatus.CREATED.value])
            reviews = cases.open_cases([CaseStatus.UNDER_REVIEW.value])
        else:
            pending = sorted(
                (c for c in cases.open_cases() if c.created_by == viewer.id),
                key=lambda c: as_utc(c.updated_at),
                reverse=True,
            )
        result = PendingActions(
            pending_cases=[case_to_response(c, now=now) for c in pending],
            pending_reviews=[case_to_response(c, now=now) for c in reviews],
            total_pending=len(pending) + len(reviews),
        )
    return OperationResult(value=result)
