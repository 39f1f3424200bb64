"""
Host environment models — tool availability, GPU and system facts.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ToolStatus(BaseModel):
    git_installed: bool = False
    git_lfs_installed: bool = False
    python_installed: bool = False
    uv_installed: bool = False
    cuda_toolkit_installed: bool = False

    @property
    def ready_for_setup(self) -> bool:
        """Minimum toolset for cloning and syncing the repository."""
        return self.git_installed and self.uv_installed


class GpuInfo(BaseModel):
    has_cuda: bool = False
    name: str | None = None
    vram_gb: float | None = None
    recommended_fp16: bool = False


class SystemInfo(BaseModel):
    os: str = ""
    cpu_brand: str = ""
    cpu_cores: int | None = None
    total_disk_gb: float = 0.0
    available_disk_gb: float = 0.0


class EnvironmentReport(BaseModel):
    """Everything ``ttshub env`` shows."""

    tools: ToolStatus = Field(default_factory=ToolStatus)
    gpu: GpuInfo = Field(default_factory=GpuInfo)
    system: SystemInfo = Field(default_factory=SystemInfo)
