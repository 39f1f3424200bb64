"""
Pipeline models — step outcomes and run reports.

``PipelineStep`` itself lives in the engine (it carries callables);
these are the serializable results that flow into the snapshot, the
run ledger and the API.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from ttshub.core.errors import ErrorKind


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StepOutcome(BaseModel):
    """Result of one pipeline step. One per step, overwritten on re-run."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    exit_message: str = ""
    exit_code: int | None = None
    error_kind: ErrorKind | None = None
    skipped: bool = False           # satisfied by its completion check
    updated_at: str = Field(default_factory=_now_iso)


class RunRecord(BaseModel):
    """Summary of the last pipeline run, kept in the snapshot."""

    run_id: str = ""
    status: RunStatus = RunStatus.NOT_STARTED
    started_at: str = ""
    ended_at: str = ""
    failed_step: str | None = None
    message: str = ""
    invocations: int = 0


class PipelineReport(BaseModel):
    """Everything one ``PipelineExecutor.run`` produced."""

    run_id: str = ""
    status: RunStatus = RunStatus.NOT_STARTED
    outcomes: list[StepOutcome] = Field(default_factory=list)
    invocations: int = 0
    failed_step: str | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    log_tail: list[str] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = ""

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def outcome(self, step_id: str) -> StepOutcome | None:
        for o in self.outcomes:
            if o.step_id == step_id:
                return o
        return None

    def statuses(self) -> list[StepStatus]:
        return [o.status for o in self.outcomes]

    def to_record(self) -> RunRecord:
        return RunRecord(
            run_id=self.run_id,
            status=self.status,
            started_at=self.started_at,
            ended_at=self.ended_at,
            failed_step=self.failed_step,
            message=self.message,
            invocations=self.invocations,
        )
