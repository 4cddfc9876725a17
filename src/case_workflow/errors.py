"""Rejection values returned by workflow operations, and the few exceptions they raise."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from case_workflow.case_lifecycle import DenialKind, TransitionDecision

T = TypeVar("T")


class RejectionKind(StrEnum):
    UNKNOWN_SOURCE = DenialKind.UNKNOWN_SOURCE.value
    INVALID_EDGE = DenialKind.INVALID_EDGE.value
    UNAUTHORIZED_ROLE = DenialKind.UNAUTHORIZED_ROLE.value
    REQUIREMENT_UNMET = "requirement_unmet"
    ROLE_MISMATCH = "role_mismatch"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"


POLICY_VIOLATIONS = frozenset(
    {RejectionKind.UNKNOWN_SOURCE, RejectionKind.INVALID_EDGE, RejectionKind.UNAUTHORIZED_ROLE}
)


@dataclass(frozen=True)
class Rejection:
    kind: RejectionKind
    message: str
    errors: tuple[str, ...] = ()

    @property
    def is_policy_violation(self) -> bool:
        return self.kind in POLICY_VIOLATIONS

    @property
    def retryable(self) -> bool:
        return self.kind == RejectionKind.CONFLICT

    @classmethod
    def from_decision(cls, decision: TransitionDecision) -> Rejection:
        if decision.allowed or decision.kind is None:
            raise ValueError("Cannot build a rejection from an allowed decision")
        return cls(kind=RejectionKind(decision.kind.value), message=decision.reason or "")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either ``value`` (success) or ``rejection`` (decision-layer refusal)."""

    value: T | None = None
    rejection: Rejection | None = None
    audit_entry_ids: tuple[int, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def rejected(cls, kind: RejectionKind, message: str, errors: tuple[str, ...] = ()):
        return cls(rejection=Rejection(kind=kind, message=message, errors=errors))


class ConflictError(Exception):
    """Conditional write matched no row: the case changed since it was read."""

    def __init__(self, case_id: int, expected: dict[str, object]) -> None:
        super().__init__(f"Case {case_id} changed concurrently (expected {expected})")
        self.case_id = case_id
        self.expected = expected


class AuditImmutableError(RuntimeError):
    """Raised when code tries to update or delete a persisted audit entry."""
