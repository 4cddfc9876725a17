"""Case status lifecycle: role-gated transition graph, assignment gate, requirement checks."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any


class Role(StrEnum):
    REQUESTER = "requester"
    ANALYST = "analyst"
    MANAGER = "manager"
    ADMIN = "admin"


class CaseStatus(StrEnum):
    CREATED = "Created"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    UNDER_REVIEW = "Under Review"
    CLOSED = "Closed"


class Priority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Category(StrEnum):
    IT = "IT"
    HR = "HR"
    FINANCE = "Finance"
    COMPLIANCE = "Compliance"
    OTHER = "Other"


CASE_STATUS_VALUES = frozenset(s.value for s in CaseStatus)
CASE_PRIORITY_VALUES = frozenset(p.value for p in Priority)
CASE_CATEGORY_VALUES = frozenset(c.value for c in Category)
ROLE_VALUES = frozenset(r.value for r in Role)

MANAGER_ROLES = frozenset({Role.MANAGER, Role.ADMIN})

# (from_status, to_status, roles). Declaration order is the order callers see.
_EDGES: tuple[tuple[CaseStatus, CaseStatus, tuple[Role, ...]], ...] = (
    (CaseStatus.CREATED, CaseStatus.ASSIGNED, (Role.MANAGER, Role.ADMIN)),
    (CaseStatus.ASSIGNED, CaseStatus.IN_PROGRESS, (Role.ANALYST,)),
    (CaseStatus.IN_PROGRESS, CaseStatus.UNDER_REVIEW, (Role.ANALYST,)),
    (CaseStatus.UNDER_REVIEW, CaseStatus.CLOSED, (Role.MANAGER, Role.ADMIN)),
    # Return for rework
    (CaseStatus.UNDER_REVIEW, CaseStatus.IN_PROGRESS, (Role.MANAGER, Role.ADMIN)),
)


def _build_transition_graph(
    edges: tuple[tuple[CaseStatus, CaseStatus, tuple[Role, ...]], ...],
) -> Mapping[CaseStatus, Mapping[CaseStatus, tuple[Role, ...]]]:
    """Build the read-only graph and check it covers every status.

    Raises RuntimeError at import time if an edge is duplicated, has no roles,
    or if a non-terminal status cannot be reached from Created.
    """
    graph: dict[CaseStatus, dict[CaseStatus, tuple[Role, ...]]] = {s: {} for s in CaseStatus}
    for src, dst, roles in edges:
        if dst in graph[src]:
            raise RuntimeError(f"Duplicate transition edge: {src} -> {dst}")
        if not roles:
            raise RuntimeError(f"Transition edge {src} -> {dst} has no authorized roles")
        graph[src][dst] = tuple(roles)

    reachable = {CaseStatus.CREATED}
    frontier = [CaseStatus.CREATED]
    while frontier:
        for dst in graph[frontier.pop()]:
            if dst not in reachable:
                reachable.add(dst)
                frontier.append(dst)
    unreachable = set(CaseStatus) - reachable
    if unreachable:
        raise RuntimeError(f"Statuses unreachable from Created: {sorted(unreachable)}")

    return MappingProxyType({src: MappingProxyType(dsts) for src, dsts in graph.items()})


VALID_CASE_TRANSITIONS = _build_transition_graph(_EDGES)
TERMINAL_STATUSES = frozenset(s for s, dsts in VALID_CASE_TRANSITIONS.items() if not dsts)


class DenialKind(StrEnum):
    UNKNOWN_SOURCE = "unknown_source"
    INVALID_EDGE = "invalid_edge"
    UNAUTHORIZED_ROLE = "unauthorized_role"


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of can_transition. ``kind`` and ``reason`` are set only when denied."""

    allowed: bool
    kind: DenialKind | None = None
    reason: str | None = None
    valid_destinations: tuple[CaseStatus, ...] = ()
    required_roles: tuple[Role, ...] = ()


ALLOWED = TransitionDecision(allowed=True)


def _coerce(enum_cls: type[StrEnum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def can_transition(current: str, target: str, role: str) -> TransitionDecision:
    """Decide whether ``role`` may move a case from ``current`` to ``target``."""
    src = _coerce(CaseStatus, current)
    outgoing = VALID_CASE_TRANSITIONS.get(src) if src is not None else None
    if not outgoing:
        return TransitionDecision(
            allowed=False,
            kind=DenialKind.UNKNOWN_SOURCE,
            reason=f"No transitions available from status: {current}",
        )
    dst = _coerce(CaseStatus, target)
    allowed_roles = outgoing.get(dst) if dst is not None else None
    if allowed_roles is None:
        destinations = tuple(outgoing)
        return TransitionDecision(
            allowed=False,
            kind=DenialKind.INVALID_EDGE,
            reason=(
                f"Cannot transition from '{current}' to '{target}'. "
                f"Valid destinations: {', '.join(destinations)}"
            ),
            valid_destinations=destinations,
        )
    if _coerce(Role, role) not in allowed_roles:
        return TransitionDecision(
            allowed=False,
            kind=DenialKind.UNAUTHORIZED_ROLE,
            reason=(
                f"Role '{role}' is not authorized for this transition. "
                f"Required: {' or '.join(allowed_roles)}"
            ),
            required_roles=allowed_roles,
        )
    return ALLOWED


def get_available_transitions(current: str, role: str) -> tuple[CaseStatus, ...]:
    """Targets reachable from ``current`` by ``role``, in declaration order."""
    src = _coerce(CaseStatus, current)
    r = _coerce(Role, role)
    if src is None or r is None:
        return ()
    return tuple(dst for dst, roles in VALID_CASE_TRANSITIONS[src].items() if r in roles)


def can_assign(status: str) -> bool:
    """Only cases still in Created go through the assignment gate."""
    return status == CaseStatus.CREATED


def validate_transition_requirements(case: Any, target: str) -> list[str]:
    """Return violated preconditions for moving ``case`` to ``target`` (empty = pass).

    ``case`` needs ``status`` and ``assigned_to`` attributes. The Closed check is
    kept even though the graph only allows Closed from Under Review.
    """
    errors: list[str] = []
    if target == CaseStatus.ASSIGNED and getattr(case, "assigned_to", None) is None:
        errors.append("Case must have an assignee before setting status to Assigned")
    if target == CaseStatus.CLOSED and getattr(case, "status", None) != CaseStatus.UNDER_REVIEW:
        errors.append("Case must be Under Review before closing")
    return errors

