"""
Service models — worker configuration and lifecycle state.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ttshub.core.errors import ErrorKind
from ttshub.core.models.command import LaunchWorker

# Hosts that mean "all interfaces"; the worker is probed on loopback.
_WILDCARD_HOSTS = {"", "0.0.0.0", "::"}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


# Allowed lifecycle edges.  Starting is only entered from Stopped and
# Running only from Starting.
TRANSITIONS: dict[ServiceState, frozenset[ServiceState]] = {
    ServiceState.STOPPED: frozenset({ServiceState.STARTING}),
    ServiceState.STARTING: frozenset(
        {ServiceState.RUNNING, ServiceState.ERROR, ServiceState.STOPPED}
    ),
    ServiceState.RUNNING: frozenset({ServiceState.STOPPED, ServiceState.ERROR}),
    ServiceState.ERROR: frozenset({ServiceState.STOPPED}),
}


class ServiceConfig(BaseModel):
    """How to run one worker instance. Immutable for that instance's lifetime."""

    model_config = ConfigDict(frozen=True)

    working_directory: str = ""
    host: str = "127.0.0.1"
    port: int = Field(default=7860, ge=1, le=65535)
    device: Literal["cpu", "gpu"] = "gpu"
    precision: Literal["fp32", "fp16"] = "fp32"
    use_deepspeed: bool = False
    extra_flags: tuple[str, ...] = ()
    hf_endpoint: str | None = None
    tls: bool = False

    @property
    def probe_host(self) -> str:
        return "127.0.0.1" if self.host in _WILDCARD_HOSTS else self.host

    @property
    def endpoint(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{self.probe_host}:{self.port}"

    def launch_command(self) -> LaunchWorker:
        return LaunchWorker(
            host=self.host,
            port=self.port,
            device=self.device,
            fp16=self.precision == "fp16",
            deepspeed=self.use_deepspeed,
            extra_flags=self.extra_flags,
            hf_endpoint=self.hf_endpoint,
        )


class ServiceStatus(BaseModel):
    """Point-in-time view of the controller's state."""

    state: ServiceState = ServiceState.STOPPED
    message: str = ""
    endpoint: str | None = None     # set only while running
    pid: int | None = None
    adopted: bool = False           # running worker found by out-of-band probe
    error_kind: ErrorKind | None = None
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def running(self) -> bool:
        return self.state == ServiceState.RUNNING
