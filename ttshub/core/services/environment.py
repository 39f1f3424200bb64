"""
Environment check — which prerequisites the host already has.

Read-only.  Tool detection is a PATH lookup; GPU detection asks
``nvidia-smi`` through the runner so mock mode works the same way.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import shutil
from pathlib import Path

from ttshub.adapters.base import CommandRunner
from ttshub.core.models.command import QueryGpu
from ttshub.core.models.environment import GpuInfo, SystemInfo, ToolStatus

logger = logging.getLogger(__name__)

ENV_TAG = "env"

# fp16 is recommended above this much VRAM.
FP16_VRAM_THRESHOLD_GB = 8.0

_MIB_RE = re.compile(r"([\d.]+)\s*MiB", re.IGNORECASE)


def check_tools(runner: CommandRunner) -> ToolStatus:
    """PATH lookup for every prerequisite."""
    python = runner.is_available("python3") or runner.is_available("python")
    return ToolStatus(
        git_installed=runner.is_available("git"),
        git_lfs_installed=runner.is_available("git-lfs"),
        python_installed=python,
        uv_installed=runner.is_available("uv"),
        cuda_toolkit_installed=runner.is_available("nvcc"),
    )


def parse_gpu_query(lines: list[str]) -> GpuInfo:
    """Parse ``nvidia-smi --query-gpu=name,memory.total,... --format=csv,noheader``.

    Only the first GPU is considered.
    """
    for line in lines:
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < 2 or not parts[0]:
            continue
        m = _MIB_RE.search(parts[1])
        vram_gb = round(float(m.group(1)) / 1024, 1) if m else None
        return GpuInfo(
            has_cuda=True,
            name=parts[0],
            vram_gb=vram_gb,
            recommended_fp16=vram_gb is not None and vram_gb > FP16_VRAM_THRESHOLD_GB,
        )
    return GpuInfo()


def detect_gpu(runner: CommandRunner) -> GpuInfo:
    """Ask ``nvidia-smi`` for the first GPU.  No driver means no CUDA."""
    if not runner.is_available("nvidia-smi"):
        return GpuInfo()
    result = runner.run(QueryGpu(), source_tag=ENV_TAG)
    if not result.success:
        logger.info("nvidia-smi failed: %s", result.message)
        return GpuInfo()
    return parse_gpu_query(result.stdout_tail)


def _cpu_brand() -> str:
    cpuinfo = Path("/proc/cpuinfo")
    if cpuinfo.is_file():
        try:
            for line in cpuinfo.read_text(errors="replace").splitlines():
                if line.startswith("model name"):
                    return line.split(":", 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or platform.machine()


def system_info(path: str | Path = ".") -> SystemInfo:
    """OS, CPU and disk space of the volume holding ``path``."""
    try:
        usage = shutil.disk_usage(path)
        total, free = usage.total / 1024**3, usage.free / 1024**3
    except OSError:
        total = free = 0.0
    return SystemInfo(
        os=f"{platform.system()} {platform.release()}".strip(),
        cpu_brand=_cpu_brand(),
        cpu_cores=os.cpu_count(),
        total_disk_gb=round(total, 1),
        available_disk_gb=round(free, 1),
    )
