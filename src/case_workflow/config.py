"""Configuration loading from YAML + environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_CASE_ID_PREFIX_LENGTH = 12


def _load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


class AppSettings(BaseSettings):
    """App-level settings with env override."""

    model_config = SettingsConfigDict(
        env_prefix="CW_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_path: str = Field(default="config/default.yaml", alias="CW_CONFIG_PATH")
    log_level: str | None = Field(default=None, alias="CW_LOG_LEVEL")
    database_url: str | None = Field(default=None, alias="CW_DATABASE_URL")
    api_host: str = Field(default="0.0.0.0", alias="CW_API_HOST")
    api_port: int = Field(default=8000, alias="CW_API_PORT")


def validate_workflow_config(config: dict[str, Any]) -> None:
    """Raise ValueError for settings the workflow engine cannot run with."""
    workflow = config.get("workflow") or {}
    retries = workflow.get("max_conflict_retries", 3)
    if not isinstance(retries, int) or retries < 1:
        raise ValueError(f"workflow.max_conflict_retries must be an integer >= 1, got {retries!r}")
    cases = config.get("cases") or {}
    prefix = str(cases.get("id_prefix", "CASE")).strip()
    if not prefix or len(prefix) > MAX_CASE_ID_PREFIX_LENGTH:
        raise ValueError(
            f"cases.id_prefix must be 1-{MAX_CASE_ID_PREFIX_LENGTH} characters, got {prefix!r}"
        )


def get_config(config_path: str | None = None) -> dict[str, Any]:
    """Load merged config from YAML and apply env overrides via AppSettings."""
    settings = AppSettings()
    path = config_path or settings.config_path
    base = _default_config()
    if Path(path).exists():
        base = _deep_merge(base, _load_yaml(path))
        dev_path = Path(path).parent / "dev.yaml"
        if dev_path.exists() and os.environ.get("CW_ENV") == "dev":
            base = _deep_merge(base, _load_yaml(dev_path))
    # Env overrides (DATABASE_URL standard for Docker/Postgres; CW_DATABASE_URL for app)
    db_url = os.environ.get("DATABASE_URL") or settings.database_url
    if db_url:
        base.setdefault("database", {})["url"] = db_url
    if settings.log_level:
        base.setdefault("app", {})["log_level"] = settings.log_level
    validate_workflow_config(base)
    return base


def _default_config() -> dict[str, Any]:
    return {
        "app": {"name": "case-workflow", "env": "default", "log_level": "INFO"},
        "database": {"url": "sqlite:///./data/cases.db", "echo": False},
        "cases": {"id_prefix": os.environ.get("CASE_ID_PREFIX", "CASE"), "page_size": 20},
        "workflow": {"max_conflict_retries": 3},
        "api": {"host": "0.0.0.0", "port": 8000},
    }


def workflow_settings(config: dict[str, Any] | None = None) -> tuple[int, str]:
    """(max_conflict_retries, case id prefix) from config, loading it if not given."""
    cfg = config if config is not None else get_config()
    retries = int((cfg.get("workflow") or {}).get("max_conflict_retries", 3))
    prefix = str((cfg.get("cases") or {}).get("id_prefix", "CASE")).strip()
    return retries, prefix
