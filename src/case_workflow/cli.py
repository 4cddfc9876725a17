"""Typer CLI: init-db, users, case workflow commands, audit checks, SLA report, serve-api."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn

import typer

from case_workflow import dashboard, workflow
from case_workflow.assignment import assign_case
from case_workflow.audit import verify_chain
from case_workflow.audit_context import set_audit_context
from case_workflow.case_lifecycle import (
    CASE_CATEGORY_VALUES,
    CASE_PRIORITY_VALUES,
    CASE_STATUS_VALUES,
    ROLE_VALUES,
)
from case_workflow.config import get_config
from case_workflow.db import init_db, session_scope
from case_workflow.errors import OperationResult, Rejection
from case_workflow.logging_config import setup_logging
from case_workflow.repository import UserDirectory

app = typer.Typer(help="Case workflow CLI")

_ACTOR_HELP = "Email of the acting user (default: $CW_ACTOR)"


def _ensure_db(config_path: str | None = None) -> dict[str, Any]:
    config = get_config(config_path)
    db_url = config.get("database", {}).get("url", "sqlite:///./data/cases.db")
    if db_url.startswith("sqlite:///"):
        Path(db_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    echo = config.get("database", {}).get("echo", False)
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    init_db(db_url, echo=echo)
    return config


def _resolve_actor(email: str | None) -> int:
    """Look up the acting user by email and bind it to the audit context."""
    email = email or os.environ.get("CW_ACTOR")
    if not email:
        typer.echo("Provide --actor or set CW_ACTOR", err=True)
        raise typer.Exit(1)
    with session_scope() as session:
        user = UserDirectory(session).get_by_email(email)
        if user is None:
            typer.echo(f"No user with email {email}", err=True)
            raise typer.Exit(1)
        actor_id = user.id
    set_audit_context(str(uuid.uuid4()))
    return actor_id


def _fail(rejection: Rejection) -> NoReturn:
    typer.echo(f"Rejected ({rejection.kind}): {rejection.message}", err=True)
    for error in rejection.errors:
        typer.echo(f"  - {error}", err=True)
    raise typer.Exit(1)


def _check_choice(value: str | None, allowed: frozenset[str], option: str) -> None:
    if value is not None and value not in allowed:
        typer.echo(f"{option} must be one of {sorted(allowed)}", err=True)
        raise typer.Exit(1)


def _unwrap(result: OperationResult[Any]) -> Any:
    if result.rejection is not None:
        _fail(result.rejection)
    return result.value


@app.command("init-db")
def init_db_cmd(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Create the schema (SQLite) or check connectivity (Postgres; schema via Alembic)."""
    cfg = _ensure_db(config)
    typer.echo(f"Database ready: {cfg['database']['url']}")


@app.command("create-user")
def create_user_cmd(
    name: str = typer.Option(..., "--name", help="Display name"),
    email: str = typer.Option(..., "--email", help="Unique email"),
    role: str = typer.Option(..., "--role", help="requester, analyst, manager or admin"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Register a directory user."""
    _check_choice(role, ROLE_VALUES, "role")
    _ensure_db(config)
    with session_scope() as session:
        users = UserDirectory(session)
        if users.get_by_email(email) is not None:
            typer.echo(f"Email already registered: {email}", err=True)
            raise typer.Exit(1)
        user_id = users.add(name, email, role).id
    typer.echo(f"Created user {user_id} ({role})")


@app.command("create-case")
def create_case_cmd(
    title: str = typer.Option(..., "--title", help="Case title"),
    category: str = typer.Option(..., "--category", help="IT, HR, Finance, Compliance, Other"),
    priority: str = typer.Option("Medium", "--priority", help="Low, Medium, High, Critical"),
    description: str | None = typer.Option(None, "--description", help="Case description"),
    actor: str | None = typer.Option(None, "--actor", help=_ACTOR_HELP),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Open a case in Created (audited)."""
    _check_choice(category, CASE_CATEGORY_VALUES, "category")
    _check_choice(priority, CASE_PRIORITY_VALUES, "priority")
    cfg = _ensure_db(config)
    actor_id = _resolve_actor(actor)
    case = _unwrap(
        workflow.create_case(actor_id, title, category, priority, description, config=cfg)
    )
    typer.echo(f"Created case {case.case_code} (id={case.id}, due {case.sla_due_at.isoformat()})")


@app.command("transition-case")
def transition_case_cmd(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    status: str = typer.Option(..., "--status", help="Target status"),
    actor: str | None = typer.Option(None, "--actor", help=_ACTOR_HELP),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Move a case to another status, subject to role and data requirements (audited)."""
    _check_choice(status, CASE_STATUS_VALUES, "status")
    cfg = _ensure_db(config)
    actor_id = _resolve_actor(actor)
    case = _unwrap(workflow.transition_case(case_id, status, actor_id, config=cfg))
    typer.echo(f"Case {case.case_code} is now {case.status}")


@app.command("assign-case")
def assign_case_cmd(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    assignee: int = typer.Option(..., "--assignee", help="Analyst user ID"),
    actor: str | None = typer.Option(None, "--actor", help=_ACTOR_HELP),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Assign a case to an analyst (manager/admin; audited)."""
    cfg = _ensure_db(config)
    actor_id = _resolve_actor(actor)
    case = _unwrap(assign_case(case_id, assignee, actor_id, config=cfg))
    typer.echo(f"Case {case.case_code} assigned to user {case.assigned_to} ({case.status})")


@app.command("update-case")
def update_case_cmd(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    title: str | None = typer.Option(None, "--title"),
    description: str | None = typer.Option(None, "--description"),
    category: str | None = typer.Option(None, "--category"),
    priority: str | None = typer.Option(None, "--priority"),
    actor: str | None = typer.Option(None, "--actor", help=_ACTOR_HELP),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Edit case details; a priority change restarts the SLA window (audited)."""
    _check_choice(category, CASE_CATEGORY_VALUES, "category")
    _check_choice(priority, CASE_PRIORITY_VALUES, "priority")
    if all(v is None for v in (title, description, category, priority)):
        typer.echo(
            "Provide at least one of --title, --description, --category, --priority", err=True
        )
        raise typer.Exit(1)
    cfg = _ensure_db(config)
    actor_id = _resolve_actor(actor)
    case = _unwrap(
        workflow.update_case_details(
            case_id,
            actor_id,
            title=title,
            description=description,
            category=category,
            priority=priority,
            config=cfg,
        )
    )
    typer.echo(f"Updated case {case.case_code}")


@app.command("add-comment")
def add_comment_cmd(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    comment: str = typer.Option(..., "--comment", help="Comment text"),
    actor: str | None = typer.Option(None, "--actor", help=_ACTOR_HELP),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Add a comment to a case (audited)."""
    _ensure_db(config)
    actor_id = _resolve_actor(actor)
    _unwrap(workflow.add_comment(case_id, actor_id, comment))
    typer.echo(f"Added comment to case {case_id}")


@app.command("audit-trail")
def audit_trail_cmd(
    case_id: int = typer.Option(..., "--id", help="Case ID"),
    as_json: bool = typer.Option(False, "--json", help="Print entries as JSON"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Print a case's audit trail, newest first."""
    _ensure_db(config)
    entries = _unwrap(workflow.get_audit_trail(case_id))
    if as_json:
        typer.echo(json.dumps([asdict(e) for e in entries], default=str, indent=2))
        return
    for e in entries:
        change = ""
        if e.previous_status or e.new_status:
            change = f" {e.previous_status or '-'} -> {e.new_status or '-'}"
        if e.action == "CASE_ASSIGNED":
            change = f" assignee {e.previous_assignee or '-'} -> {e.new_assignee}"
        typer.echo(f"{e.timestamp.isoformat()} #{e.id} {e.action}{change} by user {e.performed_by}")


@app.command("verify-audit")
def verify_audit_cmd(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Recompute the audit hash chain; exit 1 if any entry was altered."""
    _ensure_db(config)
    with session_scope() as session:
        result = verify_chain(session)
    if not result.ok:
        typer.echo(
            f"Audit chain broken at entry {result.first_broken_id} "
            f"({result.checked} entries checked)",
            err=True,
        )
        raise typer.Exit(1)
    typer.echo(f"Audit chain intact ({result.checked} entries)")


@app.command("sla-report")
def sla_report_cmd(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Open cases breached or due within 24 hours."""
    _ensure_db(config)
    report = dashboard.sla_breaches()
    typer.echo(f"Breached: {report.breached}, at risk: {report.at_risk}")
    for c in report.cases:
        typer.echo(
            f"  {c.case_code} [{c.priority}] {c.status} {c.sla_status} "
            f"({c.hours_remaining:+.1f}h)"
        )


@app.command("serve-api")
def serve_api(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind host"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the FastAPI server."""
    cfg = _ensure_db(config)
    h = host or os.environ.get("CW_API_HOST") or cfg.get("api", {}).get("host", "0.0.0.0")
    _pe = os.environ.get("CW_API_PORT", "")
    p = (
        port
        if port is not None
        else (int(_pe) if _pe.isdigit() else None) or cfg.get("api", {}).get("port", 8000)
    )
    if config:
        os.environ["CW_CONFIG_PATH"] = config
    import uvicorn

    uvicorn.run("case_workflow.api:app", host=h, port=p, reload=False)


if __name__ == "__main__":
    app()
