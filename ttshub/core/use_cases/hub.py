"""
Hub — composition root and operator actions.

The hub owns one of each component, wires their callbacks, and is the
only place the WizardSnapshot is mutated.  The CLI and the web server
are thin layers over the methods here:

    run_pipeline / abort_pipeline
    start_service / stop_service / service_status / adopt_service
    check_update / pull_update
    check_environment / clear_logs
    snapshot / update_settings

Lock ordering: the hub lock is never held while calling into the
service controller or the executor; their callbacks take it briefly.
"""

from __future__ import annotations

import logging
import sys
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from ttshub.adapters.base import CommandRunner
from ttshub.adapters.mock import MockRunner
from ttshub.adapters.shell.command import SubprocessRunner
from ttshub.core.engine.executor import PipelineExecutor, PipelineStep, StepContext
from ttshub.core.engine.steps import default_steps
from ttshub.core.errors import ConfigError, TransitionRejected
from ttshub.core.models.command import Command, CloneRepo, DownloadModel, SyncEnv
from ttshub.core.models.environment import EnvironmentReport
from ttshub.core.models.hub import HubConfig
from ttshub.core.models.pipeline import PipelineReport, RunRecord, RunStatus, StepOutcome
from ttshub.core.models.service import ServiceConfig, ServiceState, ServiceStatus
from ttshub.core.models.snapshot import WizardSnapshot
from ttshub.core.models.version import RepoVersionInfo
from ttshub.core.persistence.ledger import LedgerEntry, RunLedger
from ttshub.core.persistence.state_file import StateStore
from ttshub.core.services.environment import check_tools, detect_gpu, system_info
from ttshub.core.services.log_bus import LogBus
from ttshub.core.services.readiness import PortCheck, Probe, http_probe, port_is_reachable
from ttshub.core.services.service_controller import ServiceController
from ttshub.core.services.version_tracker import VersionTracker

logger = logging.getLogger(__name__)

# Snapshot fields the operator may change.
_SETTINGS = {"network_environment", "has_dedicated_gpu", "repo_dir", "model_dir"}
_SERVICE_SETTINGS = {"host", "port", "device", "precision", "use_deepspeed", "extra_flags", "tls"}


class Hub:
    """All operator actions over one provisioning target.

    Args:
        config: Loaded hub.yml.
        runner: Command runner (real or mock).
        bus: Log bus shared by every component.
        store: Snapshot persistence (default: under ``config.state_path``).
        ledger: Run ledger (default: under ``config.state_path``).
        probe / port_check: Readiness and port checks for the service.
        steps: Pipeline catalogue (default: ``default_steps()``).
        platform: Platform string for installer selection.
    """

    def __init__(
        self,
        config: HubConfig,
        runner: CommandRunner,
        bus: LogBus,
        *,
        store: StateStore | None = None,
        ledger: RunLedger | None = None,
        probe: Probe = http_probe,
        port_check: PortCheck = port_is_reachable,
        steps: list[PipelineStep] | None = None,
        platform: str = sys.platform,
    ) -> None:
        self._config = config
        self._runner = runner
        self._bus = bus
        self._store = store or StateStore(config.state_path, debounce=config.debounce)
        self._ledger = ledger or RunLedger(config.state_path)
        self._platform = platform
        self._lock = threading.RLock()

        loaded = self._store.load()
        self._snapshot = loaded or self._fresh_snapshot()
        # A worker from an earlier process has no handle here; adopt_service()
        # re-detects it.
        self._snapshot.service = ServiceStatus()

        self._executor = PipelineExecutor(
            runner,
            bus,
            steps if steps is not None else default_steps(),
            on_outcome=self._on_outcome,
        )
        s = config.service
        self._service = ServiceController(
            runner,
            bus,
            probe=probe,
            port_check=port_check,
            probe_interval=s.probe_interval,
            probe_attempts=s.probe_attempts,
            probe_timeout=s.probe_timeout,
            stop_grace=s.stop_grace,
            command_factory=self._launch_command,
            on_change=self._on_service_change,
            platform=platform,
        )
        self._versions = VersionTracker(
            runner,
            remote=config.repository.remote,
            ref=config.repository.branch,
            last=self._snapshot.version,
        )
        logger.debug(
            "Hub ready (runner=%s, state=%s, resumed=%s)",
            runner.name, self._store.path, loaded is not None,
        )

    def _fresh_snapshot(self) -> WizardSnapshot:
        c = self._config
        return WizardSnapshot(
            network_environment=c.network.environment,
            repo_dir=str(c.repo_path),
            model_dir=c.model.dir,
            service_defaults=c.service_config(),
        )

    # ── Components ──────────────────────────────────────────────

    @property
    def config(self) -> HubConfig:
        return self._config

    @property
    def bus(self) -> LogBus:
        return self._bus

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    @property
    def service(self) -> ServiceController:
        return self._service

    @property
    def executor(self) -> PipelineExecutor:
        return self._executor

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def ledger(self) -> RunLedger:
        return self._ledger

    # ── Snapshot & settings ─────────────────────────────────────

    def snapshot(self) -> WizardSnapshot:
        """Deep copy of the current snapshot."""
        with self._lock:
            return self._snapshot.model_copy(deep=True)

    @property
    def repo_dir(self) -> str:
        with self._lock:
            return self._snapshot.repo_dir or str(self._config.repo_path)

    def update_settings(self, **changes: Any) -> WizardSnapshot:
        """Change operator choices.

        Top-level keys: network_environment, has_dedicated_gpu,
        repo_dir, model_dir.  Service keys (host, port, device,
        precision, use_deepspeed, extra_flags, tls) apply to the next
        service start.

        Raises:
            ConfigError: unknown key or invalid value.
            TransitionRejected: a pipeline run is in progress.
        """
        unknown = set(changes) - _SETTINGS - _SERVICE_SETTINGS
        if unknown:
            raise ConfigError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        if self._executor.running:
            raise TransitionRejected("Cannot change settings while the pipeline is running")

        with self._lock:
            data = self._snapshot.model_dump()
            for key, value in changes.items():
                if key in _SERVICE_SETTINGS:
                    data["service_defaults"][key] = value
                elif key == "repo_dir" and value:
                    data[key] = str(Path(value).expanduser().resolve())
                else:
                    data[key] = value
            try:
                updated = WizardSnapshot.model_validate(data)
            except ValidationError as e:
                raise ConfigError(f"Invalid setting: {e}") from e
            updated.service = self._snapshot.service
            self._snapshot = updated
            self._persist(immediate=True)
            logger.info("Settings updated: %s", ", ".join(sorted(changes)))
            return self._snapshot.model_copy(deep=True)

    def service_config(self) -> ServiceConfig:
        """The config the next ``start_service`` will use."""
        with self._lock:
            defaults = self._snapshot.service_defaults
            mainland = self._snapshot.network_environment == "mainland_china"
            repo_dir = self._snapshot.repo_dir or str(self._config.repo_path)
        return defaults.model_copy(update={
            "working_directory": repo_dir,
            "hf_endpoint": self._config.network.mirror.hf_endpoint if mainland else None,
        })

    # ── Pipeline ────────────────────────────────────────────────

    @property
    def pipeline_running(self) -> bool:
        return self._executor.running

    def run_pipeline(self) -> PipelineReport:
        """Run the provisioning pipeline to completion or first failure.

        Raises:
            TransitionRejected: a run is already in progress.
        """
        with self._lock:
            ctx = StepContext(
                config=self._config,
                snapshot=self._snapshot.model_copy(deep=True),
                runner=self._runner,
                platform=self._platform,
            )
        if self._executor.running:
            raise TransitionRejected("A pipeline run is already in progress")

        with self._lock:
            self._snapshot.last_run = RunRecord(
                status=RunStatus.RUNNING,
                started_at=datetime.now(UTC).isoformat(),
            )
        try:
            report = self._executor.run(ctx)
        except TransitionRejected:
            with self._lock:
                self._snapshot.last_run = ctx.snapshot.last_run
            raise

        with self._lock:
            self._snapshot.last_run = report.to_record()
            if not self._snapshot.repo_dir:
                self._snapshot.repo_dir = ctx.repo_dir
            self._persist(immediate=True)
        self._ledger.write(LedgerEntry.from_report(report))
        return report

    def abort_pipeline(self) -> bool:
        """Request an abort.  Returns whether a run was in progress."""
        running = self._executor.running
        self._executor.abort()
        return running

    def _on_outcome(self, outcome: StepOutcome) -> None:
        with self._lock:
            self._snapshot.set_outcome(outcome)
            self._persist()

    # ── Service ─────────────────────────────────────────────────

    def _launch_command(self, config: ServiceConfig) -> Command:
        custom = self._config.service.custom_command()
        return custom if custom is not None else config.launch_command()

    def start_service(self) -> ServiceStatus:
        """Launch the worker with the current settings."""
        return self._service.start(self.service_config())

    def stop_service(self) -> ServiceStatus:
        return self._service.stop()

    def service_status(self) -> ServiceStatus:
        return self._service.status()

    def adopt_service(self) -> bool:
        """Reflect a worker left running by an earlier session."""
        return self._service.adopt(self.service_config())

    def wait_for_service(
        self, states: Iterable[ServiceState], timeout: float | None = None
    ) -> ServiceStatus:
        return self._service.wait_for(states, timeout)

    def _on_service_change(self, status: ServiceStatus) -> None:
        with self._lock:
            self._snapshot.service = status
            self._persist()
        self._ledger.write(LedgerEntry.from_status(status))

    # ── Updates ─────────────────────────────────────────────────

    def check_update(self) -> RepoVersionInfo:
        info = self._versions.check_update(self.repo_dir)
        with self._lock:
            self._snapshot.version = info
            self._persist()
        return info

    def pull_update(self) -> RepoVersionInfo:
        """Fast-forward the checkout.

        Raises:
            TransitionRejected: the service is starting or running.
        """
        state = self._service.state
        if state in (ServiceState.STARTING, ServiceState.RUNNING):
            raise TransitionRejected("Stop the service before pulling an update")
        info = self._versions.pull(self.repo_dir)
        with self._lock:
            self._snapshot.version = info
            self._persist(immediate=True)
        return info

    # ── Environment & logs ──────────────────────────────────────

    def check_environment(self) -> EnvironmentReport:
        gpu = detect_gpu(self._runner)
        report = EnvironmentReport(
            tools=check_tools(self._runner),
            gpu=gpu,
            system=system_info(self._config.root or "."),
        )
        with self._lock:
            self._snapshot.gpu = gpu
            self._persist()
        return report

    def clear_logs(self) -> int:
        return self._bus.clear()

    # ── Lifecycle ───────────────────────────────────────────────

    def _persist(self, immediate: bool = False) -> None:
        # Caller holds self._lock.
        if immediate:
            self._store.save(self._snapshot)
        else:
            self._store.write(self._snapshot)

    def close(self) -> None:
        """Stop a worker this hub launched and flush pending state."""
        self._service.close()
        self._store.flush()


# ── Construction ────────────────────────────────────────────────


def _mock_effects(runner: MockRunner, config: HubConfig) -> None:
    """Leave the filesystem traces the real commands would."""

    def clone(command: Command, cwd: str | None) -> None:
        assert isinstance(command, CloneRepo)
        (Path(command.target) / ".git").mkdir(parents=True, exist_ok=True)

    def sync(command: Command, cwd: str | None) -> None:
        assert isinstance(command, SyncEnv)
        if cwd:
            (Path(cwd) / ".venv").mkdir(parents=True, exist_ok=True)

    def download(command: Command, cwd: str | None) -> None:
        assert isinstance(command, DownloadModel)
        target = Path(command.local_dir)
        if not target.is_absolute() and cwd:
            target = Path(cwd) / target
        target.mkdir(parents=True, exist_ok=True)
        (target / config.model.marker).write_text("# mock\n", encoding="utf-8")

    runner.set_effect("clone_repo", clone)
    runner.set_effect("sync_env", sync)
    runner.set_effect("download_model", download)


def build_hub(config: HubConfig, *, mock: bool = False) -> Hub:
    """Wire a hub with the real runner, or a scripted one in mock mode.

    Mock mode never spawns processes: every command succeeds, the
    worker stays up until stopped and the readiness probe answers while
    a mock worker is alive.
    """
    bus = LogBus(
        history_size=config.logs.history_size,
        subscriber_queue_size=config.logs.subscriber_queue_size,
    )
    if mock:
        runner = MockRunner(bus)
        _mock_effects(runner, config)

        def probe(url: str, timeout: float) -> bool:
            worker = runner.last_handle("launch_worker")
            return worker is not None and worker.running

        return Hub(
            config,
            runner,
            bus,
            probe=probe,
            port_check=lambda host, port: False,
        )
    return Hub(config, SubprocessRunner(bus), bus)
