"""
WizardSnapshot — the persisted aggregate of all provisioning state.

This is the single document written to ``<state_dir>/wizard-state.json``.
It is created with defaults on first run, updated after every step
outcome and service transition, and loaded at startup to resume.

Forward compatibility: unknown keys are ignored and every field has a
default, so an older or newer file still loads.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ttshub.core.models.environment import GpuInfo
from ttshub.core.models.pipeline import RunRecord, StepOutcome, StepStatus
from ttshub.core.models.service import ServiceConfig, ServiceStatus
from ttshub.core.models.version import RepoVersionInfo

NetworkEnvironment = Literal["overseas", "mainland_china"]
GpuAvailability = Literal["yes", "no", "unsure"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class WizardSnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Operator choices ─────────────────────────────────────────
    network_environment: NetworkEnvironment = "mainland_china"
    has_dedicated_gpu: GpuAvailability = "unsure"
    repo_dir: str | None = None
    model_dir: str = "checkpoints"
    service_defaults: ServiceConfig = Field(default_factory=ServiceConfig)

    # ── Progress ─────────────────────────────────────────────────
    steps: dict[str, StepOutcome] = Field(default_factory=dict)
    last_run: RunRecord = Field(default_factory=RunRecord)
    service: ServiceStatus = Field(default_factory=ServiceStatus)
    version: RepoVersionInfo | None = None
    gpu: GpuInfo | None = None

    # ── Timestamps ───────────────────────────────────────────────
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    # ── Extensible metadata ──────────────────────────────────────
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def set_outcome(self, outcome: StepOutcome) -> None:
        self.steps[outcome.step_id] = outcome

    def step_succeeded(self, step_id: str) -> bool:
        outcome = self.steps.get(step_id)
        return outcome is not None and outcome.status == StepStatus.SUCCESS

    @property
    def provisioned(self) -> bool:
        """Whether the last pipeline run completed."""
        return self.last_run.status == "completed"
