"""API key authentication bound to directory users. Optional scopes: read_only vs read_write."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException
from starlette.requests import Request

from case_workflow.db import session_scope
from case_workflow.repository import UserDirectory

# When CW_API_KEYS is empty or unset, a single dev key maps to the seeded admin (dev-only).
_DEFAULT_DEV_KEYS = {"admin@example.com": "dev_key"}
_DEFAULT_SCOPE = "read_write"
_SCOPES = ("read_only", "read_write")


@dataclass(frozen=True)
class Principal:
    """The directory user behind an API key."""

    id: int
    name: str
    email: str
    role: str
    scope: str = _DEFAULT_SCOPE

    @property
    def can_write(self) -> bool:
        return self.scope != "read_only"


def parse_api_keys_env() -> tuple[dict[str, str], dict[str, str]]:
    """Parse CW_API_KEYS into key->email and key->scope.

    Format: 'alice@example.com:key1,bob@example.com:key2:read_only'
    (optional :scope, default read_write).
    """
    raw = os.environ.get("CW_API_KEYS", "").strip()
    key_to_email: dict[str, str] = {}
    key_to_scope: dict[str, str] = {}
    for part in raw.split(","):
        parts = [p.strip() for p in part.split(":")]
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        email, key = parts[0].lower(), parts[1]
        scope = parts[2] if len(parts) > 2 and parts[2] in _SCOPES else _DEFAULT_SCOPE
        key_to_email[key] = email
        key_to_scope[key] = scope
    if not key_to_email:
        key_to_email = {key: email for email, key in _DEFAULT_DEV_KEYS.items()}
        key_to_scope = {key: _DEFAULT_SCOPE for key in key_to_email}
    return key_to_email, key_to_scope


def require_user(request: Request) -> Principal:
    """Resolve X-API-Key to a directory user. 401 if missing, unknown, or unbound."""
    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")
    key_to_email, key_to_scope = parse_api_keys_env()
    email = key_to_email.get(api_key)
    if email is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    with session_scope() as session:
        user = UserDirectory(session).get_by_email(email)
        if user is None:
            raise HTTPException(status_code=401, detail="API key is not bound to a known user")
        principal = Principal(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            scope=key_to_scope.get(api_key, _DEFAULT_SCOPE),
        )
    return principal


def require_write_user(user: Principal = Depends(require_user)) -> Principal:
    """Require a key with write scope. 403 for read_only keys."""
    if not user.can_write:
        raise HTTPException(status_code=403, detail="Insufficient scope: write required")
    return user


def require_role(*roles: str, write: bool = False) -> Callable[..., Principal]:
    """Dependency factory: the caller's role must be one of ``roles``."""
    base = require_write_user if write else require_user

    def _check(user: Principal = Depends(base)) -> Principal:
        if user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Required role: {' or '.join(roles)}. Your role: {user.role}",
            )
        return user

    return _check
