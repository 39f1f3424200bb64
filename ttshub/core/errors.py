"""
Error taxonomy — every failure the hub reports has one of these kinds.

Runner and executor results carry an ``ErrorKind`` as data (they never
raise).  Operator actions raise the matching ``HubError`` subclass so
the CLI and HTTP layers can route the operator appropriately — for
example ``InvalidTarget`` sends them back to provisioning instead of
suggesting a retry.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TOOL_MISSING = "tool_missing"
    COMMAND_FAILED = "command_failed"
    READINESS_TIMEOUT = "readiness_timeout"
    NETWORK_ERROR = "network_error"
    INVALID_TARGET = "invalid_target"
    TRANSITION_REJECTED = "transition_rejected"
    INVALID_CONFIG = "invalid_config"


class HubError(Exception):
    """Base class for all operator-facing failures."""

    kind: ErrorKind = ErrorKind.COMMAND_FAILED

    def __init__(self, message: str, *, log_tail: list[str] | None = None):
        super().__init__(message)
        self.message = message
        self.log_tail = log_tail or []

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind.value,
            "log_tail": self.log_tail,
        }


class ToolMissing(HubError):
    """A required external program is not resolvable on PATH."""

    kind = ErrorKind.TOOL_MISSING

    def __init__(self, program: str, message: str | None = None):
        super().__init__(message or f"Required tool not found on PATH: {program}")
        self.program = program


class CommandFailed(HubError):
    """An external command exited non-zero."""

    kind = ErrorKind.COMMAND_FAILED

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        log_tail: list[str] | None = None,
    ):
        super().__init__(message, log_tail=log_tail)
        self.exit_code = exit_code


class ReadinessTimeout(HubError):
    """The worker never became reachable within the probe budget."""

    kind = ErrorKind.READINESS_TIMEOUT


class NetworkError(HubError):
    """A remote could not be reached. Non-fatal."""

    kind = ErrorKind.NETWORK_ERROR


class InvalidTarget(HubError):
    """The configured directory is not a valid provisioning target."""

    kind = ErrorKind.INVALID_TARGET


class TransitionRejected(HubError):
    """A service lifecycle transition is not allowed from the current state."""

    kind = ErrorKind.TRANSITION_REJECTED


class ConfigError(HubError):
    """hub.yml or an operator setting is invalid."""

    kind = ErrorKind.INVALID_CONFIG
