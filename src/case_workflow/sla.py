"""SLA deadlines and urgency classification per priority."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum
from types import MappingProxyType

from case_workflow.case_lifecycle import CaseStatus, Priority
from case_workflow.clock import as_utc

DEFAULT_SLA_HOURS = 48

SLA_HOURS = MappingProxyType(
    {
        Priority.LOW: 72,
        Priority.MEDIUM: 48,
        Priority.HIGH: 24,
        Priority.CRITICAL: 4,
    }
)

# A case is at risk once less than this much time remains before its deadline.
RISK_WINDOWS = MappingProxyType(
    {
        Priority.CRITICAL: timedelta(hours=1),
        Priority.HIGH: timedelta(hours=2),
        Priority.MEDIUM: timedelta(hours=6),
        Priority.LOW: timedelta(hours=12),
    }
)


class SlaConsumer(StrEnum):
    """Read paths that label a missed deadline differently."""

    CASE_LIST = "case_list"
    DASHBOARD = "dashboard"


class SlaStatus(StrEnum):
    CLOSED = "closed"
    OVERDUE = "overdue"
    BREACHED = "breached"
    AT_RISK = "at_risk"
    ON_TRACK = "on_track"


_MISSED_LABEL = MappingProxyType(
    {
        SlaConsumer.CASE_LIST: SlaStatus.OVERDUE,
        SlaConsumer.DASHBOARD: SlaStatus.BREACHED,
    }
)


def sla_hours(priority: str) -> int:
    try:
        return SLA_HOURS[Priority(priority)]
    except ValueError:
        return DEFAULT_SLA_HOURS


def due_at(priority: str, start: datetime) -> datetime:
    """Deadline for ``priority`` counted from ``start`` (creation or last priority edit)."""
    return start + timedelta(hours=sla_hours(priority))


def risk_window(priority: str) -> timedelta | None:
    try:
        return RISK_WINDOWS[Priority(priority)]
    except ValueError:
        return None


def classify(
    now: datetime,
    due: datetime | None,
    priority: str,
    status: str,
    consumer: SlaConsumer = SlaConsumer.CASE_LIST,
) -> SlaStatus:
    """Urgency of a case relative to ``now``.

    Closed wins over everything. A missed deadline is ``overdue`` on the case
    list and ``breached`` on the dashboard. Unknown priorities have no risk
    window and are never ``at_risk``.
    """
    if status == CaseStatus.CLOSED:
        return SlaStatus.CLOSED
    if due is None:
        return SlaStatus.ON_TRACK
    now = as_utc(now)
    due = as_utc(due)
    if now >= due:
        return _MISSED_LABEL[SlaConsumer(consumer)]
    window = risk_window(priority)
    if window is not None and due - now < window:
        return SlaStatus.AT_RISK
    return SlaStatus.ON_TRACK


def hours_remaining(now: datetime, due: datetime | None) -> float | None:
    """Signed hours until ``due`` (negative once missed)."""
    if due is None:
        return None
    return (as_utc(due) - as_utc(now)).total_seconds() / 3600
