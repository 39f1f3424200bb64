"""
Subprocess runner — spawn real processes and stream their output.

This is the single place where the hub calls ``subprocess.Popen``.
Each child gets one reader thread per stream; every line is published
to the log bus as it arrives and the last lines are kept for the
result (the last stderr line becomes the failure message).
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import IO

from ttshub.adapters.base import CommandHandle, CommandResult, CommandRunner
from ttshub.core.errors import CommandFailed, InvalidTarget, ToolMissing
from ttshub.core.models.command import Command
from ttshub.core.models.log import Stream
from ttshub.core.services.log_bus import LogBus

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


class SubprocessHandle(CommandHandle):
    """A running ``subprocess.Popen`` plus its reader threads."""

    def __init__(
        self,
        proc: subprocess.Popen,
        command: Command,
        source_tag: str,
        bus: LogBus,
        tail_lines: int,
    ) -> None:
        self.command = command
        self.source_tag = source_tag
        self._proc = proc
        self._bus = bus
        self._started = time.monotonic()
        self._stdout: deque[str] = deque(maxlen=tail_lines)
        self._stderr: deque[str] = deque(maxlen=tail_lines)
        self._result: CommandResult | None = None
        self._result_lock = threading.Lock()
        self._terminated = False

        self._readers = [
            self._spawn_reader(proc.stdout, "stdout", self._stdout),
            self._spawn_reader(proc.stderr, "stderr", self._stderr),
        ]

    def _spawn_reader(
        self, pipe: IO[str] | None, stream: Stream, tail: deque[str]
    ) -> threading.Thread:
        def _pump() -> None:
            if pipe is None:
                return
            try:
                for raw in pipe:
                    text = raw.rstrip("\r\n")
                    tail.append(text)
                    self._bus.emit(self.source_tag, text, stream=stream)
            except ValueError:
                # Pipe closed underneath us after a kill.
                pass
            finally:
                pipe.close()

        t = threading.Thread(
            target=_pump,
            name=f"{self.source_tag}-{stream}",
            daemon=True,
        )
        t.start()
        return t

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def running(self) -> bool:
        return self._proc.poll() is None

    def poll(self) -> CommandResult | None:
        if self._proc.poll() is None:
            return None
        return self._finish()

    def wait(self, timeout: float | None = None) -> CommandResult | None:
        try:
            self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        return self._finish()

    def terminate(self, grace: float = 5.0) -> CommandResult:
        if self._proc.poll() is None:
            self._terminated = True
            logger.debug("Terminating %s (pid=%s)", self.command.kind, self._proc.pid)
            self._signal(signal.SIGTERM)
            try:
                self._proc.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "%s did not exit within %.1fs, killing", self.command.kind, grace
                )
                self._signal(signal.SIGKILL if _POSIX else signal.SIGTERM, kill=True)
                self._proc.wait()
        return self._finish()

    def _signal(self, sig: int, kill: bool = False) -> None:
        """Signal the child's whole process group where supported."""
        try:
            if _POSIX:
                os.killpg(self._proc.pid, sig)
            elif kill:
                self._proc.kill()
            else:
                self._proc.terminate()
        except ProcessLookupError:
            pass

    def _finish(self) -> CommandResult:
        with self._result_lock:
            if self._result is not None:
                return self._result
            for t in self._readers:
                t.join(timeout=5)
            rc = self._proc.returncode
            elapsed_ms = int((time.monotonic() - self._started) * 1000)
            result = CommandResult.from_exit(
                self.command,
                self.source_tag,
                rc,
                list(self._stdout),
                list(self._stderr),
                duration_ms=elapsed_ms,
                terminated=self._terminated,
            )
            if self._terminated and not result.success:
                result.message = f"{self.command.program} terminated"
            self._result = result
            logger.debug(
                "%s exited with %s after %dms", self.command.kind, rc, elapsed_ms
            )
            return result


class SubprocessRunner(CommandRunner):
    """Run commands as real child processes.

    Args:
        bus: Log bus receiving every output line.
        tail_lines: Lines of stdout/stderr kept per result.
        env: Base environment (default: ``os.environ``).
    """

    def __init__(
        self,
        bus: LogBus,
        *,
        tail_lines: int = 200,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(bus)
        self._tail_lines = tail_lines
        self._env = env

    @property
    def name(self) -> str:
        return "subprocess"

    def is_available(self, program: str) -> bool:
        return shutil.which(program) is not None

    def start(
        self,
        command: Command,
        *,
        source_tag: str,
        cwd: str | None = None,
    ) -> CommandHandle:
        argv = command.argv()
        resolved = shutil.which(argv[0])
        if resolved is None:
            raise ToolMissing(argv[0])

        if cwd and not Path(cwd).is_dir():
            raise InvalidTarget(f"Working directory does not exist: {cwd}")

        env = dict(self._env if self._env is not None else os.environ)
        env.update(command.env())

        self.bus.emit(source_tag, f"$ {command.describe()}")
        logger.debug("Executing: %s (cwd=%s)", command.describe(), cwd)

        kwargs: dict = {}
        if _POSIX:
            kwargs["start_new_session"] = True
        elif hasattr(subprocess, "CREATE_NO_WINDOW"):
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        try:
            proc = subprocess.Popen(
                [resolved, *argv[1:]],
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **kwargs,
            )
        except OSError as e:
            raise CommandFailed(f"Failed to start {argv[0]}: {e}") from e

        return SubprocessHandle(proc, command, source_tag, self.bus, self._tail_lines)
