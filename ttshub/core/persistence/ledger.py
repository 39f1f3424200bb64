"""
Run ledger — append-only history of pipeline runs and service transitions.

Every pipeline run and every service state change writes one entry to
an NDJSON (newline-delimited JSON) file next to the snapshot.  The
snapshot only holds the latest state; the ledger answers "what happened
and when".

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from ttshub.core.models.pipeline import PipelineReport
from ttshub.core.models.service import ServiceStatus

logger = logging.getLogger(__name__)

LEDGER_FILE = "ledger.ndjson"


class LedgerEntry(BaseModel):
    """A single ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    kind: Literal["pipeline", "service"]
    ref: str = ""                  # run id, or service state
    status: str = ""
    message: str = ""

    # Pipeline runs
    failed_step: str | None = None
    error_kind: str | None = None
    invocations: int = 0
    steps: dict[str, str] = Field(default_factory=dict)

    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_report(cls, report: PipelineReport) -> LedgerEntry:
        return cls(
            kind="pipeline",
            ref=report.run_id,
            status=report.status.value,
            message=report.message,
            failed_step=report.failed_step,
            error_kind=report.error_kind.value if report.error_kind else None,
            invocations=report.invocations,
            steps={o.step_id: o.status.value for o in report.outcomes},
        )

    @classmethod
    def from_status(cls, status: ServiceStatus) -> LedgerEntry:
        return cls(
            kind="service",
            ref=status.state.value,
            status=status.state.value,
            message=status.message,
            error_kind=status.error_kind.value if status.error_kind else None,
            context={"endpoint": status.endpoint, "pid": status.pid, "adopted": status.adopted},
        )


class RunLedger:
    """Append-only ledger writer.

    Each call to write() appends a single JSON line.  The file is
    created if it doesn't exist.
    """

    def __init__(self, state_dir: Path):
        self._path = Path(state_dir) / LEDGER_FILE
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: LedgerEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            with self._lock:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
            logger.debug("Ledger entry written: %s/%s", entry.kind, entry.ref)
        except OSError as e:
            logger.error("Failed to write ledger entry: %s", e)

    def read_all(self) -> list[LedgerEntry]:
        """All entries, oldest first.  Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(LedgerEntry.model_validate(json.loads(line)))
                    except ValueError as e:
                        logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20, kind: str | None = None) -> list[LedgerEntry]:
        entries = self.read_all()
        if kind is not None:
            entries = [e for e in entries if e.kind == kind]
        return entries[-n:] if n > 0 else []

    def entry_count(self) -> int:
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
