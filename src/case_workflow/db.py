"""SQLAlchemy 2.x engine and session (SQLite and Postgres)."""

from __future__ import annotations

from collections.abc import Callable, Generator
from contextlib import contextmanager
from logging import getLogger
from typing import TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from case_workflow.audit import compute_audit_chain, guard_audit_immutable
from case_workflow.errors import ConflictError, OperationResult, RejectionKind
from case_workflow.models import Base, CaseAuditLog

logger = getLogger(__name__)

T = TypeVar("T")

# Module-level engine/session_factory; set via init_db()
_engine = None
_SessionLocal: sessionmaker[Session] | None = None

_IS_SQLITE = False
_LISTENERS_REGISTERED = False


def _register_listeners() -> None:
    """Attach audit hash chain and immutability guards once per process."""
    global _LISTENERS_REGISTERED
    if _LISTENERS_REGISTERED:
        return

    @event.listens_for(Session, "before_flush")
    def _before_flush_audit_chain(session, flush_context, instances):
        compute_audit_chain(session)

    event.listen(CaseAuditLog, "before_update", guard_audit_immutable)
    event.listen(CaseAuditLog, "before_delete", guard_audit_immutable)
    _LISTENERS_REGISTERED = True


def init_db(database_url: str, echo: bool = False) -> None:
    """Create engine and session factory. Call once at startup.
    SQLite: create_all. Postgres: engine only (schema via Alembic).
    """
    global _engine, _SessionLocal, _IS_SQLITE
    _IS_SQLITE = "sqlite" in database_url
    connect_args = {} if not _IS_SQLITE else {"check_same_thread": False}
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
    )
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    _register_listeners()

    if _IS_SQLITE:
        Base.metadata.create_all(bind=_engine)
        logger.info("SQLite schema ensured")
    # Postgres: schema is applied via Alembic (migrate target); do not create_all here


def get_engine():
    """Return the global engine. Raises if init_db() was not called."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for a block.

    Everything written inside the block (case rows and their audit entries)
    commits together or not at all.
    """
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_in_transaction(
    operation: Callable[[Session], OperationResult[T]],
    *,
    attempts: int,
    label: str,
    case_id: int,
) -> OperationResult[T]:
    """Run ``operation`` in its own transaction, re-reading and re-deciding on conflict.

    ``operation`` must only write after all of its checks pass, so a returned
    rejection commits nothing. Infrastructure errors propagate after rollback.
    """
    for attempt in range(1, attempts + 1):
        try:
            with session_scope() as session:
                return operation(session)
        except ConflictError as exc:
            logger.warning(
                "%s on case %s conflicted (attempt %s/%s): %s",
                label,
                case_id,
                attempt,
                attempts,
                exc,
            )
    return OperationResult.rejected(
        RejectionKind.CONFLICT,
        f"Case {case_id} was modified concurrently; re-read it and retry",
    )
