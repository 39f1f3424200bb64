"""
Pipeline executor — run provisioning steps in order, stop at the first failure.

Flow per step:
    completion check → precheck → build command → run → record outcome

A step whose completion check is already satisfied is marked ``success``
(skipped) without touching the runner, so re-running a finished
pipeline costs zero invocations.  There are no automatic retries; the
operator re-runs the pipeline and satisfied steps are skipped.
"""

from __future__ import annotations

import logging
import sys
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Callable

from ttshub.adapters.base import CommandRunner
from ttshub.core.errors import ErrorKind, HubError, TransitionRejected
from ttshub.core.models.command import Command
from ttshub.core.models.pipeline import (
    PipelineReport,
    RunStatus,
    StepOutcome,
    StepStatus,
)
from ttshub.core.services.log_bus import LogBus

if TYPE_CHECKING:
    from ttshub.core.models.hub import HubConfig
    from ttshub.core.models.snapshot import WizardSnapshot

logger = logging.getLogger(__name__)

PIPELINE_TAG = "pipeline"


@dataclass
class StepContext:
    """What a step's callables may look at.

    ``snapshot`` is a copy taken at run start; outcomes recorded during
    the run are mirrored into it so later steps see earlier results.
    """

    config: HubConfig
    snapshot: WizardSnapshot
    runner: CommandRunner
    platform: str = field(default_factory=lambda: sys.platform)

    @property
    def repo_dir(self) -> str:
        return self.snapshot.repo_dir or str(self.config.repo_path)

    @property
    def mainland(self) -> bool:
        return self.snapshot.network_environment == "mainland_china"


def _never(ctx: StepContext) -> bool:
    return False


def _no_precheck(ctx: StepContext) -> str | None:
    return None


def _no_cwd(ctx: StepContext) -> str | None:
    return None


@dataclass(frozen=True)
class PipelineStep:
    """One provisioning step.

    ``command`` may raise ``HubError`` (e.g. ``ToolMissing`` when no
    installer exists for the platform); that fails the step.
    ``precheck`` returns a reason string when the target is invalid.
    """

    id: str
    label: str
    command: Callable[[StepContext], Command]
    order: int = 0
    is_complete: Callable[[StepContext], bool] = _never
    precheck: Callable[[StepContext], str | None] = _no_precheck
    cwd: Callable[[StepContext], str | None] = _no_cwd


class PipelineExecutor:
    """Drive an ordered list of steps through a command runner.

    Args:
        runner: Runner for every step command.
        bus: Log bus; step output is tagged with the step id.
        steps: Step catalogue (sorted by ``order``, stable).
        on_outcome: Called with a copy of each outcome as it changes.
        tail_lines: Log lines attached to the report.
    """

    def __init__(
        self,
        runner: CommandRunner,
        bus: LogBus,
        steps: list[PipelineStep],
        *,
        on_outcome: Callable[[StepOutcome], None] | None = None,
        tail_lines: int = 50,
    ) -> None:
        ids = [s.id for s in steps]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate step ids: {ids}")
        self._runner = runner
        self._bus = bus
        self._steps = sorted(steps, key=lambda s: s.order)
        self._on_outcome = on_outcome
        self._tail_lines = tail_lines
        self._abort = threading.Event()
        self._run_lock = threading.Lock()

    @property
    def steps(self) -> list[PipelineStep]:
        return list(self._steps)

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def abort(self) -> None:
        """Request cancellation.  Takes effect before the next step."""
        if self.running:
            self._bus.emit(PIPELINE_TAG, "Abort requested; stopping after the current step")
        self._abort.set()

    def run(self, ctx: StepContext) -> PipelineReport:
        """Execute all steps.

        Raises:
            TransitionRejected: another run is in progress.
        """
        if not self._run_lock.acquire(blocking=False):
            raise TransitionRejected("A pipeline run is already in progress")
        try:
            return self._run(ctx)
        finally:
            self._run_lock.release()

    # ── Internals ───────────────────────────────────────────────

    def _record(self, ctx: StepContext, outcome: StepOutcome) -> None:
        ctx.snapshot.set_outcome(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome.model_copy())

    def _run(self, ctx: StepContext) -> PipelineReport:
        self._abort.clear()
        report = PipelineReport(run_id=generate_run_id(), status=RunStatus.RUNNING)
        start_seq = self._bus.seq

        # Completion checks read prior outcomes, so judge them before the reset.
        prior = ctx.snapshot.model_copy(deep=True)
        check_ctx = StepContext(
            config=ctx.config, snapshot=prior, runner=ctx.runner, platform=ctx.platform
        )

        outcomes: dict[str, StepOutcome] = {}
        for step in self._steps:
            outcomes[step.id] = StepOutcome(step_id=step.id)
            self._record(ctx, outcomes[step.id])

        self._bus.emit(
            PIPELINE_TAG,
            f"Run {report.run_id} started ({len(self._steps)} steps)",
        )
        logger.info("Pipeline run %s started", report.run_id)

        for step in self._steps:
            if self._abort.is_set():
                report.message = "Aborted by operator"
                break

            if step.is_complete(check_ctx):
                outcome = StepOutcome(
                    step_id=step.id,
                    status=StepStatus.SUCCESS,
                    exit_message="Already satisfied",
                    skipped=True,
                )
                outcomes[step.id] = outcome
                self._record(ctx, outcome)
                self._bus.emit(PIPELINE_TAG, f"✓ {step.label}: already satisfied")
                continue

            reason = step.precheck(ctx)
            if reason:
                self._fail(ctx, report, outcomes, step, ErrorKind.INVALID_TARGET, reason)
                break

            outcomes[step.id] = StepOutcome(step_id=step.id, status=StepStatus.RUNNING)
            self._record(ctx, outcomes[step.id])
            self._bus.emit(PIPELINE_TAG, f"▶ {step.label}")

            try:
                command = step.command(ctx)
            except HubError as e:
                self._fail(ctx, report, outcomes, step, e.kind, e.message)
                break

            result = self._runner.run(command, source_tag=step.id, cwd=step.cwd(ctx))
            report.invocations += 1

            if not result.success:
                self._fail(
                    ctx, report, outcomes, step,
                    result.error_kind or ErrorKind.COMMAND_FAILED,
                    result.message,
                    exit_code=result.exit_code,
                )
                break

            outcome = StepOutcome(
                step_id=step.id,
                status=StepStatus.SUCCESS,
                exit_code=result.exit_code,
                exit_message="Done",
            )
            outcomes[step.id] = outcome
            self._record(ctx, outcome)
            self._bus.emit(PIPELINE_TAG, f"✓ {step.label}")
        else:
            report.status = RunStatus.COMPLETED
            report.message = "All steps completed"

        if report.status != RunStatus.COMPLETED:
            report.status = RunStatus.ABORTED

        report.outcomes = [outcomes[s.id] for s in self._steps]
        report.ended_at = datetime.now(UTC).isoformat()
        report.log_tail = [
            line.render()
            for line in self._bus.history()
            if line.seq > start_seq
        ][-self._tail_lines:]

        self._bus.emit(
            PIPELINE_TAG,
            f"Run {report.run_id} {report.status.value}: {report.message}",
            stream="stdout" if report.ok else "stderr",
        )
        logger.info(
            "Pipeline run %s %s (%d invocations)",
            report.run_id, report.status.value, report.invocations,
        )
        return report

    def _fail(
        self,
        ctx: StepContext,
        report: PipelineReport,
        outcomes: dict[str, StepOutcome],
        step: PipelineStep,
        kind: ErrorKind,
        message: str,
        exit_code: int | None = None,
    ) -> None:
        outcome = StepOutcome(
            step_id=step.id,
            status=StepStatus.FAILED,
            exit_message=message,
            exit_code=exit_code,
            error_kind=kind,
        )
        outcomes[step.id] = outcome
        self._record(ctx, outcome)
        report.failed_step = step.id
        report.error_kind = kind
        report.message = f"{step.label} failed: {message}"
        self._bus.emit(PIPELINE_TAG, f"✗ {report.message}", stream="stderr")
        logger.warning("Step %s failed (%s): %s", step.id, kind.value, message)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
