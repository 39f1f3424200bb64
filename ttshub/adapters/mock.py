"""
Mock runner — universal test double for every external command.

Used in mock mode (``ttshub web --mock``) and in tests to simulate
command behavior without touching the host. Configurable per command
kind: scripted exit codes and output, missing programs, and
long-running handles that stay alive until a test finishes them.
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from ttshub.adapters.base import CommandHandle, CommandResult, CommandRunner
from ttshub.core.errors import ToolMissing
from ttshub.core.models.command import Command
from ttshub.core.services.log_bus import LogBus

_pids = itertools.count(40000)


@dataclass
class MockCall:
    """One recorded invocation."""

    command: Command
    source_tag: str
    cwd: str | None = None
    at: float = field(default_factory=time.time)

    @property
    def kind(self) -> str:
        return self.command.kind


@dataclass
class ScriptedResult:
    exit_code: int = 0
    stdout: tuple[str, ...] = ()
    stderr: tuple[str, ...] = ()


class MockHandle(CommandHandle):
    """Handle for a simulated child.

    Short commands are finished on creation. Long-running ones stay
    ``running`` until ``finish()`` (simulated exit) or ``terminate()``.
    """

    def __init__(
        self,
        command: Command,
        source_tag: str,
        bus: LogBus,
        script: ScriptedResult | None = None,
    ) -> None:
        self.command = command
        self.source_tag = source_tag
        self._bus = bus
        self._pid = next(_pids)
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._started = time.monotonic()
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._result: CommandResult | None = None
        if script is not None:
            self.finish(script.exit_code, stdout=script.stdout, stderr=script.stderr)

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def running(self) -> bool:
        return not self._done.is_set()

    def output(self, text: str, stream: str = "stdout") -> None:
        """Simulate the child printing a line."""
        (self._stderr if stream == "stderr" else self._stdout).append(text)
        self._bus.emit(self.source_tag, text, stream=stream)

    def finish(
        self,
        exit_code: int = 0,
        *,
        stdout: tuple[str, ...] | list[str] = (),
        stderr: tuple[str, ...] | list[str] = (),
        terminated: bool = False,
    ) -> CommandResult:
        """Simulate the child exiting. No-op if it already exited."""
        with self._lock:
            if self._result is not None:
                return self._result
            for text in stdout:
                self.output(text)
            for text in stderr:
                self.output(text, "stderr")
            result = CommandResult.from_exit(
                self.command,
                self.source_tag,
                exit_code,
                list(self._stdout),
                list(self._stderr),
                duration_ms=int((time.monotonic() - self._started) * 1000),
                terminated=terminated,
            )
            if terminated and not result.success:
                result.message = f"{self.command.program} terminated"
            self._result = result
            self._done.set()
            return result

    def poll(self) -> CommandResult | None:
        return self._result if self._done.is_set() else None

    def wait(self, timeout: float | None = None) -> CommandResult | None:
        if not self._done.wait(timeout):
            return None
        return self._result

    def terminate(self, grace: float = 5.0) -> CommandResult:
        return self.finish(-15, terminated=True)


class MockRunner(CommandRunner):
    """Scripted runner for tests and mock mode.

    By default every command succeeds with ``default_output`` and
    ``launch_worker`` stays running until terminated.
    """

    def __init__(
        self,
        bus: LogBus,
        *,
        default_output: str = "[mock] executed",
        long_running: tuple[str, ...] = ("launch_worker",),
    ) -> None:
        super().__init__(bus)
        self._default_output = default_output
        self._long_running = set(long_running)
        self._scripts: dict[str, list[ScriptedResult]] = {}
        self._missing: set[str] = set()
        self._effects: dict[str, Callable[[Command, str | None], None]] = {}
        self._call_log: list[MockCall] = []
        self._handles: list[MockHandle] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[MockCall]:
        """All invocations this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def handles(self) -> list[MockHandle]:
        return self._handles

    def calls(self, kind: str) -> list[MockCall]:
        return [c for c in self._call_log if c.kind == kind]

    def last_handle(self, kind: str) -> MockHandle | None:
        for h in reversed(self._handles):
            if h.command.kind == kind:
                return h
        return None

    # ── Scripting ───────────────────────────────────────────────

    def set_result(
        self,
        kind: str,
        exit_code: int = 0,
        *,
        stdout: tuple[str, ...] | list[str] = (),
        stderr: tuple[str, ...] | list[str] = (),
    ) -> None:
        """Every later ``kind`` invocation returns this result."""
        self._scripts[kind] = [ScriptedResult(exit_code, tuple(stdout), tuple(stderr))]

    def queue_result(
        self,
        kind: str,
        exit_code: int = 0,
        *,
        stdout: tuple[str, ...] | list[str] = (),
        stderr: tuple[str, ...] | list[str] = (),
    ) -> None:
        """Append a result consumed in order; the last one sticks."""
        self._scripts.setdefault(kind, []).append(
            ScriptedResult(exit_code, tuple(stdout), tuple(stderr))
        )

    def set_failure(self, kind: str, exit_code: int = 1, error: str = "Mock failure") -> None:
        self.set_result(kind, exit_code, stderr=(error,))

    def set_missing(self, program: str, missing: bool = True) -> None:
        if missing:
            self._missing.add(program)
        else:
            self._missing.discard(program)

    def set_effect(self, kind: str, effect: Callable[[Command, str | None], None]) -> None:
        """Run ``effect(command, cwd)`` whenever ``kind`` starts.

        Lets mock mode leave the same filesystem traces as the real
        command (a cloned ``.git``, a downloaded model marker).
        """
        self._effects[kind] = effect

    def set_long_running(self, kind: str, long_running: bool = True) -> None:
        if long_running:
            self._long_running.add(kind)
        else:
            self._long_running.discard(kind)

    def reset(self) -> None:
        """Clear call log, handles and scripted results."""
        with self._lock:
            self._call_log.clear()
            self._handles.clear()
            self._scripts.clear()
            self._effects.clear()
            self._missing.clear()

    # ── Runner protocol ─────────────────────────────────────────

    def is_available(self, program: str) -> bool:
        return program not in self._missing

    def _next_script(self, kind: str) -> ScriptedResult | None:
        queue = self._scripts.get(kind)
        if not queue:
            return None
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def start(
        self,
        command: Command,
        *,
        source_tag: str,
        cwd: str | None = None,
    ) -> CommandHandle:
        with self._lock:
            self._call_log.append(MockCall(command, source_tag, cwd))
            if command.program in self._missing:
                raise ToolMissing(command.program)
            script = self._next_script(command.kind)

        self.bus.emit(source_tag, f"$ {command.describe()}")

        effect = self._effects.get(command.kind)
        if effect is not None and (script is None or script.exit_code == 0):
            effect(command, cwd)

        if script is None and command.kind not in self._long_running:
            script = ScriptedResult(stdout=(self._default_output,))

        handle = MockHandle(command, source_tag, self.bus, script)
        with self._lock:
            self._handles.append(handle)
        return handle
