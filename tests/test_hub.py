"""
Tests for the hub — operator actions end to end over the mock runner.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ttshub.adapters.mock import MockRunner
from ttshub.core.errors import ConfigError, InvalidTarget, TransitionRejected
from ttshub.core.models.hub import HubConfig
from ttshub.core.models.pipeline import RunStatus
from ttshub.core.models.service import ServiceState
from ttshub.core.services.log_bus import LogBus
from ttshub.core.use_cases.hub import Hub, build_hub

SETTLED = (ServiceState.RUNNING, ServiceState.ERROR)


@pytest.fixture
def hub(hub_config: HubConfig):
    h = build_hub(hub_config, mock=True)
    yield h
    h.close()


def _provision(hub: Hub) -> None:
    report = hub.run_pipeline()
    assert report.ok, report.message


class TestPipeline:
    def test_run_persists_and_records(self, hub: Hub, hub_config: HubConfig):
        report = hub.run_pipeline()
        assert report.ok

        snap = hub.snapshot()
        assert snap.provisioned
        assert snap.last_run.run_id == report.run_id
        assert snap.steps["clone-repo"].status == "success"
        assert (hub_config.repo_path / ".git").is_dir()

        assert hub.store.load().last_run.status == RunStatus.COMPLETED
        entries = hub.ledger.read_recent(kind="pipeline")
        assert entries[-1].ref == report.run_id

    def test_resume_after_restart(self, hub: Hub, hub_config: HubConfig):
        _provision(hub)
        hub.close()

        again = build_hub(hub_config, mock=True)
        try:
            assert again.snapshot().provisioned
            assert again.service_status().state == ServiceState.STOPPED
            report = again.run_pipeline()
            assert report.invocations == 0
        finally:
            again.close()

    def test_failure_then_fix_then_rerun(self, hub: Hub):
        runner: MockRunner = hub.runner  # type: ignore[assignment]
        runner.set_failure("lfs_pull", 2, "error: lfs object missing")
        first = hub.run_pipeline()
        assert first.failed_step == "lfs-pull"
        assert hub.snapshot().last_run.status == RunStatus.ABORTED

        runner.set_result("lfs_pull")
        second = hub.run_pipeline()
        assert second.ok
        assert second.outcome("clone-repo").skipped
        assert second.outcome("lfs-install").skipped
        assert not second.outcome("lfs-pull").skipped


class TestSettings:
    def test_update_service_settings(self, hub: Hub):
        hub.update_settings(port=7861, precision="fp16", extra_flags=["--verbose"])
        cfg = hub.service_config()
        assert cfg.port == 7861
        assert cfg.precision == "fp16"
        assert cfg.extra_flags == ("--verbose",)
        assert hub.store.load().service_defaults.port == 7861

    def test_network_environment_controls_hf_endpoint(self, hub: Hub):
        assert hub.service_config().hf_endpoint is None
        hub.update_settings(network_environment="mainland_china")
        assert hub.service_config().hf_endpoint == "https://hf-mirror.com"

    def test_unknown_setting(self, hub: Hub):
        with pytest.raises(ConfigError):
            hub.update_settings(colour="blue")

    def test_invalid_value(self, hub: Hub):
        with pytest.raises(ConfigError):
            hub.update_settings(port=0)
        assert hub.service_config().port == 7860


class TestService:
    def test_start_requires_checkout(self, hub: Hub):
        with pytest.raises(InvalidTarget):
            hub.start_service()

    def test_start_stop(self, hub: Hub):
        _provision(hub)
        hub.start_service()
        status = hub.wait_for_service(SETTLED, timeout=5)
        assert status.state == ServiceState.RUNNING
        assert status.endpoint == "http://127.0.0.1:7860"
        assert hub.snapshot().service.state == ServiceState.RUNNING

        with pytest.raises(TransitionRejected):
            hub.pull_update()

        assert hub.stop_service().state == ServiceState.STOPPED
        kinds = [e.status for e in hub.ledger.read_recent(kind="service")]
        assert kinds[-3:] == ["starting", "running", "stopped"]

    def test_close_stops_owned_worker(self, hub: Hub):
        _provision(hub)
        hub.start_service()
        hub.wait_for_service(SETTLED, timeout=5)
        worker = hub.runner.last_handle("launch_worker")  # type: ignore[attr-defined]
        hub.close()
        assert not worker.running

    def test_custom_worker_command(self, tmp_path: Path, bus: LogBus, checkout: Path):
        config = HubConfig.model_validate({
            "root": str(tmp_path),
            "debounce": 0,
            "service": {"command": ["python", "serve.py"], "probe_interval": 0.01},
        })
        runner = MockRunner(bus, long_running=("exec",))
        hub = Hub(config, runner, bus, probe=lambda url, t: True, port_check=lambda h, p: False)
        try:
            hub.start_service()
            assert hub.wait_for_service(SETTLED, timeout=5).state == ServiceState.RUNNING
            call = runner.calls("exec")[0]
            assert call.command.argv() == ["python", "serve.py"]
            assert Path(call.cwd) == checkout.resolve()
        finally:
            hub.close()


class TestUpdates:
    def test_check_and_pull(self, hub: Hub):
        _provision(hub)
        runner: MockRunner = hub.runner  # type: ignore[assignment]
        runner.queue_result("rev_parse", stdout=["7f8a9b1"])
        runner.queue_result("rev_parse", stdout=["3c2d1e0"])
        runner.set_result("ls_remote", stdout=["3c2d1e0\tHEAD"])

        assert hub.check_update().has_update
        assert hub.snapshot().version.has_update
        info = hub.pull_update()
        assert not info.has_update
        assert hub.snapshot().version.local_revision == "3c2d1e0"

    def test_check_before_clone(self, hub: Hub):
        with pytest.raises(InvalidTarget):
            hub.check_update()


class TestEnvironmentAndLogs:
    def test_environment_report(self, hub: Hub):
        runner: MockRunner = hub.runner  # type: ignore[assignment]
        runner.set_result("query_gpu", stdout=["NVIDIA GeForce RTX 4090, 24564 MiB, 550.54"])
        report = hub.check_environment()
        assert report.tools.ready_for_setup
        assert report.gpu.has_cuda
        assert report.gpu.recommended_fp16
        assert hub.snapshot().gpu.name == "NVIDIA GeForce RTX 4090"

    def test_clear_logs(self, hub: Hub):
        _provision(hub)
        assert hub.clear_logs() > 0
        assert hub.bus.history() == []
