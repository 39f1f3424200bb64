"""
Tests for the service lifecycle controller.

The worker is a MockRunner long-running handle; readiness and port
checks are injected so no sockets are opened.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from ttshub.adapters.mock import MockRunner
from ttshub.core.errors import ErrorKind, InvalidTarget, ToolMissing, TransitionRejected
from ttshub.core.models.service import ServiceConfig, ServiceState, ServiceStatus
from ttshub.core.services.log_bus import LogBus
from ttshub.core.services.service_controller import ServiceController

SETTLED = (ServiceState.RUNNING, ServiceState.ERROR, ServiceState.STOPPED)


class CountingProbe:
    """Succeeds from the ``succeed_on``-th call (never if None)."""

    def __init__(self, succeed_on: int | None = None) -> None:
        self.succeed_on = succeed_on
        self.calls: list[tuple[str, float]] = []
        self._lock = threading.Lock()

    def __call__(self, url: str, timeout: float) -> bool:
        with self._lock:
            self.calls.append((url, timeout))
            return self.succeed_on is not None and len(self.calls) >= self.succeed_on


def _controller(
    runner: MockRunner,
    bus: LogBus,
    probe: CountingProbe,
    *,
    port_open: bool = False,
    interval: float = 0.01,
    attempts: int = 30,
    changes: list[ServiceStatus] | None = None,
    platform: str = "linux",
) -> ServiceController:
    return ServiceController(
        runner,
        bus,
        probe=probe,
        port_check=lambda host, port: port_open,
        probe_interval=interval,
        probe_attempts=attempts,
        probe_timeout=0.01,
        stop_grace=0.1,
        port_release_attempts=2,
        port_release_delay=0,
        on_change=changes.append if changes is not None else None,
        platform=platform,
    )


@pytest.fixture
def config(checkout: Path) -> ServiceConfig:
    return ServiceConfig(working_directory=str(checkout), port=7860)


class TestStart:
    def test_ready_on_third_probe(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        probe = CountingProbe(succeed_on=3)
        ctrl = _controller(mock_runner, bus, probe)

        status = ctrl.start(config)
        assert status.state == ServiceState.STARTING
        assert status.pid is not None

        final = ctrl.wait_for(SETTLED, timeout=5)
        assert final.state == ServiceState.RUNNING
        assert final.endpoint == "http://127.0.0.1:7860"
        assert "attempt 3/30" in final.message
        assert len(probe.calls) == 3
        assert probe.calls[0][0] == "http://127.0.0.1:7860"
        assert mock_runner.calls("launch_worker")[0].cwd == config.working_directory
        ctrl.stop()

    def test_probe_exhaustion_is_bounded(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        probe = CountingProbe()
        ctrl = _controller(mock_runner, bus, probe, interval=0.02, attempts=5)

        started = time.monotonic()
        ctrl.start(config)
        final = ctrl.wait_for((ServiceState.ERROR,), timeout=5)
        elapsed = time.monotonic() - started

        assert final.state == ServiceState.ERROR
        assert final.error_kind == ErrorKind.READINESS_TIMEOUT
        assert final.endpoint is None
        assert elapsed < 5 * 0.02 + 1.0
        assert len(probe.calls) <= 5
        assert all(timeout <= 0.01 for _, timeout in probe.calls)
        assert not mock_runner.last_handle("launch_worker").running

    def test_timeout_reports_attempts_made(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        now = [0.0]

        def slow_probe(url: str, timeout: float) -> bool:
            now[0] += 0.03
            return False

        ctrl = ServiceController(
            mock_runner,
            bus,
            probe=slow_probe,
            port_check=lambda host, port: False,
            probe_interval=0.01,
            probe_attempts=5,
            probe_timeout=0.01,
            stop_grace=0.1,
            port_release_attempts=1,
            port_release_delay=0,
            clock=lambda: now[0],
        )
        ctrl.start(config)
        final = ctrl.wait_for((ServiceState.ERROR,), timeout=5)
        assert final.error_kind == ErrorKind.READINESS_TIMEOUT
        assert "after 2 attempt(s)" in final.message

    def test_double_start_rejected(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        ctrl = _controller(mock_runner, bus, CountingProbe(), attempts=1000)
        ctrl.start(config)
        with pytest.raises(TransitionRejected):
            ctrl.start(config)
        assert len(mock_runner.calls("launch_worker")) == 1
        ctrl.stop()

    def test_not_a_checkout(self, mock_runner: MockRunner, bus: LogBus, tmp_path: Path):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        with pytest.raises(InvalidTarget):
            ctrl.start(ServiceConfig(working_directory=str(tmp_path)))
        with pytest.raises(InvalidTarget):
            ctrl.start(ServiceConfig(working_directory=str(tmp_path / "missing")))
        assert ctrl.state == ServiceState.STOPPED
        assert mock_runner.call_count == 0

    def test_launch_failure_enters_error(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        mock_runner.set_missing("uv")
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        with pytest.raises(ToolMissing):
            ctrl.start(config)
        status = ctrl.status()
        assert status.state == ServiceState.ERROR
        assert status.error_kind == ErrorKind.TOOL_MISSING

    def test_start_from_error_passes_through_stopped(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        changes: list[ServiceStatus] = []
        probe = CountingProbe()
        ctrl = _controller(mock_runner, bus, probe, attempts=2, changes=changes)
        ctrl.start(config)
        ctrl.wait_for((ServiceState.ERROR,), timeout=5)

        probe.succeed_on = 1
        ctrl.start(config)
        assert ctrl.wait_for(SETTLED, timeout=5).state == ServiceState.RUNNING
        states = [c.state for c in changes]
        assert states == [
            ServiceState.STARTING,
            ServiceState.ERROR,
            ServiceState.STOPPED,
            ServiceState.STARTING,
            ServiceState.RUNNING,
        ]
        ctrl.stop()


class TestStop:
    def test_stop_running(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        ctrl.start(config)
        ctrl.wait_for(SETTLED, timeout=5)

        status = ctrl.stop()
        assert status.state == ServiceState.STOPPED
        assert status.pid is None
        assert not mock_runner.last_handle("launch_worker").running

    def test_stop_during_probing_cancels(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        probe = CountingProbe()
        ctrl = _controller(mock_runner, bus, probe, interval=0.05, attempts=1000)
        ctrl.start(config)
        time.sleep(0.1)

        assert ctrl.stop().state == ServiceState.STOPPED
        calls = len(probe.calls)
        time.sleep(0.2)
        # No late probe result may move the state.
        assert ctrl.state == ServiceState.STOPPED
        assert len(probe.calls) == calls

    def test_stop_when_stopped_is_noop(self, mock_runner: MockRunner, bus: LogBus):
        ctrl = _controller(mock_runner, bus, CountingProbe())
        assert ctrl.stop().state == ServiceState.STOPPED
        assert mock_runner.call_count == 0

    def test_port_still_served_is_error(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        mock_runner.set_result("list_port_pids", stdout=["4242"])
        ctrl = _controller(mock_runner, bus, CountingProbe(1), port_open=True)
        ctrl.start(config)
        ctrl.wait_for(SETTLED, timeout=5)

        status = ctrl.stop()
        assert status.state == ServiceState.ERROR
        assert "7860" in status.message
        assert [c.command.pid for c in mock_runner.calls("kill_pid")] == [4242, 4242]

    def test_port_release_on_windows_uses_taskkill(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        mock_runner.set_result("list_port_pids", stdout=["5100"])
        ctrl = _controller(mock_runner, bus, CountingProbe(1), port_open=True, platform="win32")
        ctrl.start(config)
        ctrl.wait_for(SETTLED, timeout=5)
        ctrl.stop()

        assert mock_runner.calls("list_port_pids")[0].command.program == "powershell"
        kill = mock_runner.calls("kill_pid")[0].command
        assert kill.argv() == ["taskkill", "/PID", "5100", "/F"]


class TestMonitoring:
    def test_unexpected_exit(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        ctrl.start(config)
        ctrl.wait_for(SETTLED, timeout=5)

        mock_runner.last_handle("launch_worker").finish(1, stderr=["CUDA out of memory"])
        status = ctrl.wait_for((ServiceState.ERROR,), timeout=5)
        assert status.state == ServiceState.ERROR
        assert "exited unexpectedly (code 1)" in status.message
        assert "CUDA out of memory" in status.message
        assert status.error_kind == ErrorKind.COMMAND_FAILED

    def test_transitions_published_on_bus(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        ctrl.start(config)
        ctrl.wait_for(SETTLED, timeout=5)
        ctrl.stop()
        texts = [line.text for line in bus.history(source_tag="service")]
        assert any(t.startswith("stopped → starting") for t in texts)
        assert any(t.startswith("starting → running") for t in texts)
        assert any(t.startswith("running → stopped") for t in texts)

    def test_callback_errors_do_not_break_transitions(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        def broken(status: ServiceStatus) -> None:
            raise RuntimeError("boom")

        ctrl = ServiceController(
            mock_runner, bus, probe=CountingProbe(1), port_check=lambda h, p: False,
            probe_interval=0.01, on_change=broken,
        )
        ctrl.start(config)
        assert ctrl.wait_for(SETTLED, timeout=5).state == ServiceState.RUNNING
        ctrl.stop()


class TestAdopt:
    def test_adopt_running_worker(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        assert ctrl.adopt(config)
        status = ctrl.status()
        assert status.state == ServiceState.RUNNING
        assert status.adopted
        assert status.pid is None
        assert status.endpoint == "http://127.0.0.1:7860"
        assert mock_runner.calls("launch_worker") == []

        assert ctrl.stop().state == ServiceState.STOPPED

    def test_nothing_to_adopt(self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig):
        ctrl = _controller(mock_runner, bus, CountingProbe())
        assert not ctrl.adopt(config)
        assert ctrl.state == ServiceState.STOPPED

    def test_close_leaves_adopted_worker(
        self, mock_runner: MockRunner, bus: LogBus, config: ServiceConfig
    ):
        ctrl = _controller(mock_runner, bus, CountingProbe(1))
        ctrl.adopt(config)
        ctrl.close()
        assert ctrl.state == ServiceState.RUNNING
