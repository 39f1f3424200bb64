"""Adapters — command runners for external tools.

Public re-exports for convenient access.
"""

from ttshub.adapters.base import CommandHandle, CommandResult, CommandRunner
from ttshub.adapters.mock import MockHandle, MockRunner
from ttshub.adapters.shell.command import SubprocessRunner

__all__ = [
    "CommandHandle",
    "CommandResult",
    "CommandRunner",
    "MockHandle",
    "MockRunner",
    "SubprocessRunner",
]
