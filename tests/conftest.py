"""Pytest fixtures: file-backed SQLite DB, sample config, seeded users, fixed clock."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

# Ensure all tests use SQLite by default; ignore DATABASE_URL unless running
# the optional Postgres smoke test (which uses POSTGRES_TEST_URL only).
if "POSTGRES_TEST_URL" not in os.environ:
    os.environ.pop("DATABASE_URL", None)
os.environ.pop("CW_DATABASE_URL", None)

from case_workflow import workflow
from case_workflow.clock import FixedClock
from case_workflow.config import get_config
from case_workflow.db import init_db, session_scope
from case_workflow.repository import UserDirectory
from case_workflow.schemas import CaseResponse

START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture
def config_path(tmp_path: Path) -> str:
    """Return path to a temporary config dir with default.yaml."""
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    (cfg_dir / "default.yaml").write_text(
        f"""
app:
  log_level: INFO
database:
  url: "sqlite:///{tmp_path / 'cases.db'}"
  echo: false
cases:
  id_prefix: CASE
  page_size: 20
workflow:
  max_conflict_retries: 3
"""
    )
    return str(cfg_dir / "default.yaml")


@pytest.fixture
def config(config_path: str) -> dict[str, Any]:
    """Loaded config with the database initialized."""
    cfg = get_config(config_path)
    init_db(cfg["database"]["url"], echo=False)
    return cfg


@pytest.fixture
def users(config: dict[str, Any]) -> SimpleNamespace:
    """One user per role (plus a second analyst); attributes are user ids."""
    with session_scope() as session:
        directory = UserDirectory(session)
        seeded = SimpleNamespace(
            requester=directory.add("Rita Requester", "rita@example.com", "requester").id,
            analyst=directory.add("Andy Analyst", "andy@example.com", "analyst").id,
            analyst2=directory.add("Ada Analyst", "ada@example.com", "analyst").id,
            manager=directory.add("Mona Manager", "mona@example.com", "manager").id,
            admin=directory.add("Alex Admin", "admin@example.com", "admin").id,
        )
    return seeded


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def open_case(users: SimpleNamespace, clock: FixedClock, config: dict[str, Any]):
    """Factory: create a case as the requester and return its CaseResponse."""

    def _open(
        priority: str = "High", category: str = "IT", title: str = "VPN down"
    ) -> CaseResponse:
        result = workflow.create_case(
            users.requester,
            title,
            category,
            priority,
            "Cannot connect",
            clock=clock,
            config=config,
        )
        assert result.ok, result.rejection
        return result.value

    return _open
