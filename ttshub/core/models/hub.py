"""
Hub configuration model — loaded from hub.yml.

Every section and field has a default, so an empty (or absent) hub.yml
provisions the standard repository and model on the standard port.
Relative paths are resolved against ``root`` (the directory holding
hub.yml, or the working directory when there is none).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from ttshub.core.models.command import Exec
from ttshub.core.models.service import ServiceConfig
from ttshub.core.models.snapshot import NetworkEnvironment

ModelSource = Literal["huggingface", "modelscope"]

PYPI_MIRROR = "https://pypi.tuna.tsinghua.edu.cn/simple"
HF_MIRROR = "https://hf-mirror.com"


class RepositoryConfig(BaseModel):
    """The code repository that hosts the worker."""

    url: str = "https://github.com/index-tts/index-tts.git"
    dir: str = "index-tts"
    remote: str = "origin"
    branch: str = "HEAD"


class ModelConfig(BaseModel):
    id: str = "IndexTeam/IndexTTS-2"
    dir: str = "checkpoints"            # relative to the repository checkout
    marker: str = "config.yaml"         # present once the download finished


class MirrorConfig(BaseModel):
    """Mirrors used when the network environment is ``mainland_china``."""

    pypi_index: str = PYPI_MIRROR
    hf_endpoint: str = HF_MIRROR
    model_source: ModelSource = "modelscope"


class NetworkConfig(BaseModel):
    environment: NetworkEnvironment = "mainland_china"
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)


class ServiceSettings(BaseModel):
    """Worker launch and lifecycle tuning."""

    host: str = "127.0.0.1"
    port: int = Field(default=7860, ge=1, le=65535)
    device: Literal["cpu", "gpu"] = "gpu"
    precision: Literal["fp32", "fp16"] = "fp32"
    use_deepspeed: bool = False
    extra_flags: list[str] = Field(default_factory=list)
    tls: bool = False

    probe_interval: float = Field(default=2.0, gt=0)
    probe_attempts: int = Field(default=30, ge=1)
    probe_timeout: float = Field(default=2.0, gt=0)
    stop_grace: float = Field(default=5.0, ge=0)

    # Explicit worker command (program + args) replacing ``uv run webui.py``.
    command: list[str] | None = None
    environment: dict[str, str] = Field(default_factory=dict)

    def custom_command(self) -> Exec | None:
        if not self.command:
            return None
        return Exec(
            executable=self.command[0],
            args=tuple(self.command[1:]),
            environment=dict(self.environment),
        )


class LogSettings(BaseModel):
    history_size: int = Field(default=2000, ge=1)
    subscriber_queue_size: int = Field(default=1000, ge=1)


class HubConfig(BaseModel):
    """Root configuration — the defaults for every operator choice."""

    version: int = 1
    root: str = ""

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    logs: LogSettings = Field(default_factory=LogSettings)

    state_dir: str = ".state"
    debounce: float = Field(default=0.5, ge=0)

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the config root."""
        p = Path(path).expanduser()
        if p.is_absolute():
            return p
        return (Path(self.root or ".") / p).resolve()

    @property
    def repo_path(self) -> Path:
        return self.resolve(self.repository.dir)

    @property
    def state_path(self) -> Path:
        return self.resolve(self.state_dir)

    def service_config(self, working_directory: str | None = None) -> ServiceConfig:
        s = self.service
        return ServiceConfig(
            working_directory=working_directory or str(self.repo_path),
            host=s.host,
            port=s.port,
            device=s.device,
            precision=s.precision,
            use_deepspeed=s.use_deepspeed,
            extra_flags=tuple(s.extra_flags),
            hf_endpoint=(
                self.network.mirror.hf_endpoint
                if self.network.environment == "mainland_china" else None
            ),
            tls=s.tls,
        )
