"""Audit context: correlation_id for traceability (CLI run or API request)."""

from __future__ import annotations

import uuid
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("audit_correlation_id", default=None)


def set_audit_context(correlation_id: str | None) -> None:
    """Set correlation_id for the current context. The acting user is passed explicitly."""
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str:
    """Return current correlation_id, generating and pinning one if not set."""
    cid = _correlation_id.get()
    if cid is None:
        cid = str(uuid.uuid4())
        _correlation_id.set(cid)
    return cid
