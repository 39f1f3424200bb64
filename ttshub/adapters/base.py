"""
Runner base — the protocol contract between the hub and external commands.

Everything the hub does to the host goes through a ``CommandRunner``.
There are two implementations, selected once at startup:

    - SubprocessRunner  (adapters/shell/command.py) — real processes
    - MockRunner        (adapters/mock.py)          — scripted, in-memory

Business logic never checks which one it holds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ttshub.core.errors import ErrorKind, HubError
from ttshub.core.models.command import Command
from ttshub.core.services.log_bus import LogBus


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CommandResult(BaseModel):
    """Outcome of one command invocation.

    Runners NEVER raise from ``run()`` — failures are captured here,
    including a missing executable (``error_kind=tool_missing``).
    """

    command: str
    kind: str
    source_tag: str
    success: bool = True
    exit_code: int | None = None
    message: str = ""
    error_kind: ErrorKind | None = None
    terminated: bool = False

    stdout_tail: list[str] = Field(default_factory=list)
    stderr_tail: list[str] = Field(default_factory=list)

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.success

    @property
    def failed(self) -> bool:
        return not self.success

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_tail)

    @classmethod
    def from_exit(
        cls,
        command: Command,
        source_tag: str,
        exit_code: int,
        stdout_tail: list[str],
        stderr_tail: list[str],
        **kwargs,
    ) -> CommandResult:
        """Build a result from a finished process."""
        if exit_code == 0:
            return cls(
                command=command.describe(),
                kind=command.kind,
                source_tag=source_tag,
                exit_code=0,
                stdout_tail=stdout_tail,
                stderr_tail=stderr_tail,
                **kwargs,
            )
        last_err = next((line for line in reversed(stderr_tail) if line.strip()), None)
        message = last_err or f"{command.program} exited with code {exit_code}"
        return cls(
            command=command.describe(),
            kind=command.kind,
            source_tag=source_tag,
            success=False,
            exit_code=exit_code,
            message=message,
            error_kind=ErrorKind.COMMAND_FAILED,
            stdout_tail=stdout_tail,
            stderr_tail=stderr_tail,
            **kwargs,
        )

    @classmethod
    def from_error(cls, command: Command, source_tag: str, error: HubError) -> CommandResult:
        """Build a result for a command that could not be spawned."""
        return cls(
            command=command.describe(),
            kind=command.kind,
            source_tag=source_tag,
            success=False,
            message=error.message,
            error_kind=error.kind,
        )


class CommandHandle(ABC):
    """A spawned child process."""

    command: Command
    source_tag: str

    @property
    @abstractmethod
    def pid(self) -> int | None:
        """OS process id (fake in the mock)."""

    @property
    @abstractmethod
    def running(self) -> bool:
        """Whether the child has not exited yet."""

    @abstractmethod
    def poll(self) -> CommandResult | None:
        """Result if the child has exited, else None. Never blocks."""

    @abstractmethod
    def wait(self, timeout: float | None = None) -> CommandResult | None:
        """Block until exit. Returns None if ``timeout`` elapsed first."""

    @abstractmethod
    def terminate(self, grace: float = 5.0) -> CommandResult:
        """Ask the child to stop; kill it if it outlives ``grace`` seconds."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} kind={self.command.kind!r} pid={self.pid}>"


class CommandRunner(ABC):
    """Abstract base class for command runners.

    Output of every child is forwarded line-by-line to ``bus`` under the
    caller's source tag, in receipt order per stream.
    """

    def __init__(self, bus: LogBus) -> None:
        self._bus = bus

    @property
    def bus(self) -> LogBus:
        return self._bus

    @property
    @abstractmethod
    def name(self) -> str:
        """Runner identifier ('subprocess', 'mock')."""

    @abstractmethod
    def is_available(self, program: str) -> bool:
        """Whether ``program`` resolves on this host. Fast, never raises."""

    @abstractmethod
    def start(
        self,
        command: Command,
        *,
        source_tag: str,
        cwd: str | None = None,
    ) -> CommandHandle:
        """Spawn ``command`` and return immediately.

        Raises:
            ToolMissing: the program is not resolvable (nothing spawned).
            InvalidTarget: ``cwd`` does not exist.
        """

    def run(
        self,
        command: Command,
        *,
        source_tag: str,
        cwd: str | None = None,
    ) -> CommandResult:
        """Spawn ``command`` and wait for it. Never raises."""
        try:
            handle = self.start(command, source_tag=source_tag, cwd=cwd)
        except HubError as e:
            self._bus.emit(source_tag, e.message, stream="stderr")
            return CommandResult.from_error(command, source_tag, e)
        result = handle.wait()
        assert result is not None  # no timeout given
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
