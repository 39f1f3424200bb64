"""
RepoVersionInfo — result of one update check.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ttshub.core.errors import ErrorKind


class RepoVersionInfo(BaseModel):
    local_revision: str = ""
    remote_revision: str | None = None
    has_update: bool = False
    message: str = ""
    stale: bool = False             # remote unreachable; values are from an earlier check
    error_kind: ErrorKind | None = None
    checked_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
