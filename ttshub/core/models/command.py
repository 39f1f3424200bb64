"""
Command descriptors — the closed set of external commands the hub runs.

Every external invocation is one of these typed models.  The runner
never receives a free-form string: it receives a descriptor and asks it
for ``program``, ``argv()`` and ``env()``.  Descriptors are frozen and
discriminated by ``kind`` so they serialize cleanly into logs, the run
ledger and the HTTP API.
"""

from __future__ import annotations

import shlex
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _CommandBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def program(self) -> str:
        return self.argv()[0]

    def argv(self) -> list[str]:
        raise NotImplementedError

    def env(self) -> dict[str, str]:
        """Extra environment variables for the child process."""
        return {}

    def describe(self) -> str:
        """Shell-quoted rendering, for log banners only."""
        return shlex.join(self.argv())


# ── Tool installation ───────────────────────────────────────────

_INSTALLERS: dict[tuple[str, str], list[str]] = {
    ("winget", "git"): ["winget", "install", "--id", "Git.Git", "-e", "--source", "winget"],
    ("winget", "uv"): ["winget", "install", "--id", "astral-sh.uv", "-e"],
    ("winget", "python"): ["winget", "install", "--id", "Python.Python.3.10", "-e"],
    ("brew", "git"): ["brew", "install", "git", "git-lfs"],
    ("brew", "uv"): ["brew", "install", "uv"],
    ("brew", "python"): ["brew", "install", "python@3.10"],
    ("script", "uv"): ["sh", "-c", "curl -LsSf https://astral.sh/uv/install.sh | sh"],
}


class InstallTool(_CommandBase):
    """Install a prerequisite through the host's package manager."""

    kind: Literal["install_tool"] = "install_tool"
    tool: Literal["git", "uv", "python"]
    manager: Literal["winget", "brew", "script"]

    @model_validator(mode="after")
    def _known_installer(self) -> InstallTool:
        if (self.manager, self.tool) not in _INSTALLERS:
            raise ValueError(f"No {self.manager} installer for {self.tool}")
        return self

    def argv(self) -> list[str]:
        return list(_INSTALLERS[(self.manager, self.tool)])


# ── Repository ──────────────────────────────────────────────────


class CloneRepo(_CommandBase):
    kind: Literal["clone_repo"] = "clone_repo"
    url: str
    target: str

    def argv(self) -> list[str]:
        return ["git", "clone", self.url, self.target]


class LfsInstall(_CommandBase):
    kind: Literal["lfs_install"] = "lfs_install"
    repo: str

    def argv(self) -> list[str]:
        return ["git", "-C", self.repo, "lfs", "install"]


class LfsPull(_CommandBase):
    kind: Literal["lfs_pull"] = "lfs_pull"
    repo: str

    def argv(self) -> list[str]:
        return ["git", "-C", self.repo, "lfs", "pull"]


class RevParse(_CommandBase):
    kind: Literal["rev_parse"] = "rev_parse"
    repo: str
    ref: str = "HEAD"

    def argv(self) -> list[str]:
        return ["git", "-C", self.repo, "rev-parse", self.ref]


class LsRemote(_CommandBase):
    kind: Literal["ls_remote"] = "ls_remote"
    repo: str
    remote: str = "origin"
    ref: str = "HEAD"

    def argv(self) -> list[str]:
        return ["git", "-C", self.repo, "ls-remote", self.remote, self.ref]


class GitPull(_CommandBase):
    kind: Literal["git_pull"] = "git_pull"
    repo: str
    ff_only: bool = True

    def argv(self) -> list[str]:
        cmd = ["git", "-C", self.repo, "pull"]
        if self.ff_only:
            cmd.append("--ff-only")
        return cmd


# ── Python environment & models ─────────────────────────────────


class SyncEnv(_CommandBase):
    """``uv sync`` inside the repository checkout."""

    kind: Literal["sync_env"] = "sync_env"
    index_url: str | None = None
    all_extras: bool = True

    def argv(self) -> list[str]:
        cmd = ["uv", "sync"]
        if self.all_extras:
            cmd.append("--all-extras")
        if self.index_url:
            cmd += ["--index-url", self.index_url]
        return cmd


class InstallUvTool(_CommandBase):
    kind: Literal["install_uv_tool"] = "install_uv_tool"
    package: str
    index_url: str | None = None

    def argv(self) -> list[str]:
        cmd = ["uv", "tool", "install", self.package]
        if self.index_url:
            cmd += ["--index-url", self.index_url]
        return cmd


class DownloadModel(_CommandBase):
    kind: Literal["download_model"] = "download_model"
    source: Literal["huggingface", "modelscope"]
    model_id: str
    local_dir: str = "checkpoints"
    hf_endpoint: str | None = None

    def argv(self) -> list[str]:
        if self.source == "modelscope":
            return [
                "uv", "run", "modelscope", "download",
                "--model", self.model_id,
                "--local_dir", self.local_dir,
            ]
        return [
            "uv", "run", "hf", "download", self.model_id,
            "--local-dir", self.local_dir,
        ]

    def env(self) -> dict[str, str]:
        if self.source == "huggingface" and self.hf_endpoint:
            return {"HF_ENDPOINT": self.hf_endpoint}
        return {}


# ── Worker ──────────────────────────────────────────────────────


class LaunchWorker(_CommandBase):
    """Start the inference web UI through ``uv run``."""

    kind: Literal["launch_worker"] = "launch_worker"
    script: str = "webui.py"
    host: str = "127.0.0.1"
    port: int = 7860
    device: Literal["cpu", "gpu"] = "gpu"
    fp16: bool = False
    deepspeed: bool = False
    extra_flags: tuple[str, ...] = ()
    hf_endpoint: str | None = None

    def argv(self) -> list[str]:
        cmd = ["uv", "run", self.script, "--host", self.host, "--port", str(self.port)]
        if self.fp16:
            cmd.append("--fp16")
        if self.deepspeed:
            cmd.append("--deepspeed")
        cmd += list(self.extra_flags)
        return cmd

    def env(self) -> dict[str, str]:
        env: dict[str, str] = {}
        if self.hf_endpoint:
            env["HF_ENDPOINT"] = self.hf_endpoint
        if self.device == "cpu":
            env["CUDA_VISIBLE_DEVICES"] = ""
        return env


# ── Host inspection ─────────────────────────────────────────────


class QueryGpu(_CommandBase):
    kind: Literal["query_gpu"] = "query_gpu"

    def argv(self) -> list[str]:
        return [
            "nvidia-smi",
            "--query-gpu=name,memory.total,driver_version",
            "--format=csv,noheader",
        ]


class ListPortPids(_CommandBase):
    """PIDs owning a TCP port, one per output line.

    ``lsof`` on POSIX, ``Get-NetTCPConnection`` through PowerShell on
    Windows.
    """

    kind: Literal["list_port_pids"] = "list_port_pids"
    port: int
    windows: bool = False

    def argv(self) -> list[str]:
        if self.windows:
            script = (
                f"Get-NetTCPConnection -LocalPort {self.port} -ErrorAction SilentlyContinue"
                " | Select-Object -ExpandProperty OwningProcess"
            )
            return ["powershell", "-NoProfile", "-Command", script]
        return ["lsof", "-ti", f":{self.port}"]


class KillPid(_CommandBase):
    kind: Literal["kill_pid"] = "kill_pid"
    pid: int
    windows: bool = False

    def argv(self) -> list[str]:
        if self.windows:
            return ["taskkill", "/PID", str(self.pid), "/F"]
        return ["kill", "-9", str(self.pid)]


class Exec(_CommandBase):
    """An explicit program + argument list taken from hub.yml."""

    kind: Literal["exec"] = "exec"
    executable: str
    args: tuple[str, ...] = ()
    environment: dict[str, str] = Field(default_factory=dict)

    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def env(self) -> dict[str, str]:
        return dict(self.environment)


Command = Annotated[
    Union[
        InstallTool,
        CloneRepo,
        LfsInstall,
        LfsPull,
        RevParse,
        LsRemote,
        GitPull,
        SyncEnv,
        InstallUvTool,
        DownloadModel,
        LaunchWorker,
        QueryGpu,
        ListPortPids,
        KillPid,
        Exec,
    ],
    Field(discriminator="kind"),
]
