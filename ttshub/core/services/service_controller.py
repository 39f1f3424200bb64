"""
ServiceController — lifecycle of the single inference worker.

State machine (see ``TRANSITIONS`` in core/models/service.py):

    stopped ──start──▶ starting ──probe ok──▶ running
                          │  │                   │
                          │  └──probe exhausted──┼──▶ error
                          │     or worker exit   │
                          └──────stop────────────┴──▶ stopped

Thread safety model
───────────────────
- ``_transition_lock`` serializes ``start``/``stop``/``adopt`` so they
  never interleave.
- ``_state`` (a Condition) guards ``_status``, ``_handle`` and
  ``_generation``.  Background threads (probe, exit watcher) capture
  the generation they were started for and only act while it is still
  current; ``stop()`` bumps it, which makes any late result from an
  earlier start a no-op.
- The change callback runs outside the state lock.
"""

from __future__ import annotations

import logging
import sys
import threading
import time
from pathlib import Path
from typing import Callable, Iterable

from ttshub.adapters.base import CommandHandle, CommandRunner
from ttshub.adapters.vcs.git import is_checkout
from ttshub.core.errors import (
    ErrorKind,
    HubError,
    InvalidTarget,
    ReadinessTimeout,
    TransitionRejected,
)
from ttshub.core.models.command import Command
from ttshub.core.models.log import SERVICE_TAG
from ttshub.core.models.service import (
    TRANSITIONS,
    ServiceConfig,
    ServiceState,
    ServiceStatus,
)
from ttshub.core.services.log_bus import LogBus
from ttshub.core.services.readiness import (
    PortCheck,
    Probe,
    ensure_port_closed,
    http_probe,
    port_is_reachable,
)

logger = logging.getLogger(__name__)

_ACTIVE = (ServiceState.STARTING, ServiceState.RUNNING)


class ServiceController:
    """Start, probe, monitor and stop one worker process.

    Args:
        runner: Command runner used to launch the worker and clean up
            its port.
        bus: Log bus; every transition is published under ``service``.
        probe: ``(url, timeout) -> bool`` readiness check.
        port_check: ``(host, port) -> bool``, True while the port is served.
        probe_interval: Seconds between probe attempts.
        probe_attempts: Attempts before giving up.  Total probing time
            is bounded by ``probe_attempts * probe_interval``.
        probe_timeout: Upper bound for a single probe.
        stop_grace: Seconds between SIGTERM and SIGKILL on stop.
        command_factory: Builds the launch command from a config
            (default: ``config.launch_command()``).
        on_change: Called with a copy of the status after every
            transition.
        platform: Selects the port cleanup commands (``sys.platform``).
    """

    def __init__(
        self,
        runner: CommandRunner,
        bus: LogBus,
        *,
        probe: Probe = http_probe,
        port_check: PortCheck = port_is_reachable,
        probe_interval: float = 2.0,
        probe_attempts: int = 30,
        probe_timeout: float = 2.0,
        stop_grace: float = 5.0,
        port_release_attempts: int = 5,
        port_release_delay: float = 0.3,
        command_factory: Callable[[ServiceConfig], Command] | None = None,
        on_change: Callable[[ServiceStatus], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        platform: str = sys.platform,
    ) -> None:
        self._runner = runner
        self._bus = bus
        self._probe = probe
        self._port_check = port_check
        self._probe_interval = probe_interval
        self._probe_attempts = probe_attempts
        self._probe_timeout = probe_timeout
        self._stop_grace = stop_grace
        self._port_release_attempts = port_release_attempts
        self._port_release_delay = port_release_delay
        self._command_factory = command_factory or (lambda c: c.launch_command())
        self._on_change = on_change
        self._clock = clock
        self._platform = platform

        self._transition_lock = threading.Lock()
        self._state = threading.Condition()
        self._status = ServiceStatus()
        self._config: ServiceConfig | None = None
        self._handle: CommandHandle | None = None
        self._cancel: threading.Event | None = None
        self._threads: list[threading.Thread] = []
        self._generation = 0

    # ── Queries ─────────────────────────────────────────────────

    def status(self) -> ServiceStatus:
        with self._state:
            return self._status.model_copy()

    @property
    def state(self) -> ServiceState:
        with self._state:
            return self._status.state

    @property
    def config(self) -> ServiceConfig | None:
        with self._state:
            return self._config

    def wait_for(
        self, states: Iterable[ServiceState], timeout: float | None = None
    ) -> ServiceStatus:
        """Block until the state is one of ``states`` (or timeout)."""
        wanted = set(states)
        with self._state:
            self._state.wait_for(lambda: self._status.state in wanted, timeout)
            return self._status.model_copy()

    # ── Operator actions ────────────────────────────────────────

    def start(self, config: ServiceConfig) -> ServiceStatus:
        """Launch the worker and begin readiness probing.

        Returns as soon as the worker is spawned (state ``starting``).

        Raises:
            TransitionRejected: already starting or running.
            InvalidTarget: working directory missing or not a checkout.
            ToolMissing / CommandFailed: the worker could not be spawned.
        """
        with self._transition_lock:
            current = self.state
            if current in _ACTIVE:
                raise TransitionRejected(f"Service is already {current.value}")

            wd = config.working_directory
            if not wd or not Path(wd).is_dir():
                raise InvalidTarget(
                    f"Working directory does not exist: {wd or '(not set)'}"
                )
            if not is_checkout(wd):
                raise InvalidTarget(
                    f"{wd} is not a repository checkout; run the pipeline first"
                )

            if current == ServiceState.ERROR:
                self._transition(ServiceState.STOPPED, "Cleared previous error")

            command = self._command_for(config)
            cancel = threading.Event()
            with self._state:
                self._generation += 1
                gen = self._generation
                self._config = config
                self._cancel = cancel
                self._threads = []

            self._transition(
                ServiceState.STARTING, f"Launching worker for {config.endpoint}"
            )
            try:
                handle = self._runner.start(command, source_tag=SERVICE_TAG, cwd=wd)
            except HubError as e:
                self._transition(ServiceState.ERROR, e.message, error_kind=e.kind)
                raise

            with self._state:
                self._handle = handle
                self._status = self._status.model_copy(update={"pid": handle.pid})

            self._spawn("service-probe", self._probe_loop, gen, cancel, config.endpoint)
            self._spawn("service-watch", self._watch_exit, gen, handle, cancel)
            return self.status()

    def stop(self) -> ServiceStatus:
        """Authoritatively stop the worker and release its port.

        Cancels in-flight probing, terminates the process (SIGTERM, then
        SIGKILL after the grace period) and kills leftover listeners.
        Ends in ``stopped``, or ``error`` if the port is still served.
        """
        with self._transition_lock:
            with self._state:
                current = self._status.state
                self._generation += 1
                cancel, handle, config = self._cancel, self._handle, self._config
                threads = list(self._threads)
                self._handle = None
                self._cancel = None
                self._threads = []

            if cancel is not None:
                cancel.set()
            if current == ServiceState.STOPPED and handle is None:
                return self.status()

            if handle is not None and handle.running:
                self._bus.emit(SERVICE_TAG, f"Stopping worker (pid {handle.pid})")
                handle.terminate(self._stop_grace)
            for t in threads:
                if t is not threading.current_thread():
                    t.join(timeout=self._probe_timeout + 1)

            closed = True
            if config is not None:
                closed = ensure_port_closed(
                    self._runner,
                    config.port,
                    host=config.probe_host,
                    attempts=self._port_release_attempts,
                    delay=self._port_release_delay,
                    is_open=self._port_check,
                    platform=self._platform,
                )

            if closed:
                self._transition(ServiceState.STOPPED, "Service stopped")
            else:
                message = f"Port {config.port} is still in use after stop"
                if self.state == ServiceState.ERROR:
                    self._set_message(message, ErrorKind.COMMAND_FAILED)
                else:
                    self._transition(
                        ServiceState.ERROR, message, error_kind=ErrorKind.COMMAND_FAILED
                    )
            return self.status()

    def adopt(self, config: ServiceConfig) -> bool:
        """Take over a worker that is already answering on ``config.endpoint``.

        Used at startup: a worker left running by an earlier session is
        reflected as ``running`` without a process handle.
        """
        with self._transition_lock:
            if self.state != ServiceState.STOPPED:
                return False
            if not self._probe(config.endpoint, self._probe_timeout):
                return False
            with self._state:
                self._generation += 1
                self._config = config
            self._transition(
                ServiceState.STARTING,
                f"Found a worker already listening on {config.endpoint}",
                adopted=True,
            )
            self._transition(
                ServiceState.RUNNING,
                f"Adopted running worker at {config.endpoint}",
                endpoint=config.endpoint,
                adopted=True,
            )
            return True

    def close(self) -> None:
        """Stop a worker this controller launched."""
        with self._state:
            owned = self._handle is not None
        if owned:
            self.stop()

    # ── Background threads ──────────────────────────────────────

    def _spawn(self, name: str, target: Callable, *args) -> None:
        t = threading.Thread(target=target, args=args, name=name, daemon=True)
        with self._state:
            self._threads.append(t)
        t.start()

    def _probe_loop(self, gen: int, cancel: threading.Event, endpoint: str) -> None:
        attempts = self._probe_attempts
        deadline = self._clock() + attempts * self._probe_interval
        made = 0

        for attempt in range(1, attempts + 1):
            if cancel.is_set():
                return
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            made = attempt
            if self._probe(endpoint, min(self._probe_timeout, remaining)):
                self._transition(
                    ServiceState.RUNNING,
                    f"Worker ready at {endpoint} (attempt {attempt}/{attempts})",
                    endpoint=endpoint,
                    expect_gen=gen,
                )
                return
            logger.debug("Probe %d/%d of %s failed", attempt, attempts, endpoint)
            if attempt < attempts:
                wait = min(self._probe_interval, deadline - self._clock())
                if wait > 0 and cancel.wait(wait):
                    return

        if cancel.is_set():
            return

        err = ReadinessTimeout(
            f"Worker did not answer at {endpoint} after {made} attempt(s) "
            f"in {attempts * self._probe_interval:g}s"
        )
        if self._transition(
            ServiceState.ERROR, err.message, error_kind=err.kind, expect_gen=gen
        ):
            with self._state:
                handle = self._handle if self._generation == gen else None
            if handle is not None:
                handle.terminate(self._stop_grace)

    def _watch_exit(self, gen: int, handle: CommandHandle, cancel: threading.Event) -> None:
        result = handle.wait()
        if result is None or cancel.is_set():
            return
        with self._state:
            if gen != self._generation or self._status.state not in _ACTIVE:
                return
        cancel.set()
        last = self._bus.last_line(SERVICE_TAG)
        detail = result.message or (last.text if last else "")
        self._transition(
            ServiceState.ERROR,
            f"Worker exited unexpectedly (code {result.exit_code}): {detail}",
            error_kind=ErrorKind.COMMAND_FAILED,
            expect_gen=gen,
        )

    # ── Internals ───────────────────────────────────────────────

    def _command_for(self, config: ServiceConfig) -> Command:
        return self._command_factory(config)

    def _transition(
        self,
        to: ServiceState,
        message: str,
        *,
        endpoint: str | None = None,
        adopted: bool = False,
        error_kind: ErrorKind | None = None,
        expect_gen: int | None = None,
    ) -> bool:
        """Move to ``to``.  Returns False when ``expect_gen`` is stale.

        Raises:
            TransitionRejected: the edge is not in ``TRANSITIONS``.
        """
        with self._state:
            if expect_gen is not None and expect_gen != self._generation:
                return False
            current = self._status.state
            if to not in TRANSITIONS[current]:
                if expect_gen is not None:
                    return False
                raise TransitionRejected(
                    f"Cannot go from {current.value} to {to.value}"
                )
            active = to in _ACTIVE
            pid = self._handle.pid if (active and self._handle is not None) else None
            self._status = ServiceStatus(
                state=to,
                message=message,
                endpoint=endpoint if to == ServiceState.RUNNING else None,
                pid=pid,
                adopted=adopted and active,
                error_kind=error_kind if to == ServiceState.ERROR else None,
            )
            snapshot = self._status.model_copy()
            self._bus.emit(
                SERVICE_TAG,
                f"{current.value} → {to.value}: {message}",
                stream="stderr" if to == ServiceState.ERROR else "stdout",
            )
            self._state.notify_all()

        log = logger.warning if to == ServiceState.ERROR else logger.info
        log("Service %s → %s: %s", current.value, to.value, message)
        self._notify(snapshot)
        return True

    def _set_message(self, message: str, error_kind: ErrorKind | None) -> None:
        with self._state:
            self._status = self._status.model_copy(
                update={"message": message, "error_kind": error_kind}
            )
            snapshot = self._status.model_copy()
        self._bus.emit(SERVICE_TAG, message, stream="stderr")
        self._notify(snapshot)

    def _notify(self, status: ServiceStatus) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(status)
        except Exception:
            logger.exception("Service change callback failed")
