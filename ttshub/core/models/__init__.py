"""
Domain models — Pydantic types for the hub.

All models are re-exported here for convenient access:

    from ttshub.core.models import LogLine, ServiceConfig, WizardSnapshot
"""

from ttshub.core.models.environment import (
    EnvironmentReport,
    GpuInfo,
    SystemInfo,
    ToolStatus,
)
from ttshub.core.models.log import SERVICE_TAG, LogLine
from ttshub.core.models.pipeline import (
    PipelineReport,
    RunRecord,
    RunStatus,
    StepOutcome,
    StepStatus,
)
from ttshub.core.models.service import (
    ServiceConfig,
    ServiceState,
    ServiceStatus,
)
from ttshub.core.models.snapshot import WizardSnapshot
from ttshub.core.models.version import RepoVersionInfo

__all__ = [
    # environment.py
    "EnvironmentReport",
    "GpuInfo",
    # log.py
    "LogLine",
    # pipeline.py
    "PipelineReport",
    "RepoVersionInfo",
    "RunRecord",
    "RunStatus",
    "SERVICE_TAG",
    # service.py
    "ServiceConfig",
    "ServiceState",
    "ServiceStatus",
    "StepOutcome",
    "StepStatus",
    "SystemInfo",
    "ToolStatus",
    # snapshot.py
    "WizardSnapshot",
]
