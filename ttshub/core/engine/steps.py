"""
Default step catalogue — provisioning the inference repository.

    install-git → install-uv → clone-repo → lfs-install → lfs-pull
        → sync-env → install-hf-cli → install-modelscope → download-model

Mirror selection follows the network environment: ``mainland_china``
uses the PyPI mirror, ModelScope for model weights and the HF mirror
endpoint; ``overseas`` goes to PyPI and HuggingFace directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ttshub.adapters.vcs.git import is_checkout, is_empty_dir
from ttshub.core.errors import ToolMissing
from ttshub.core.models.command import (
    CloneRepo,
    DownloadModel,
    InstallTool,
    InstallUvTool,
    LfsInstall,
    LfsPull,
    SyncEnv,
)
from ttshub.core.models.hub import ModelSource
from ttshub.core.engine.executor import PipelineStep, StepContext

HF_CLI_PACKAGE = "huggingface-hub[cli,hf_xet]"
MODELSCOPE_PACKAGE = "modelscope"


@dataclass(frozen=True)
class MirrorSelection:
    index_url: str | None
    model_source: ModelSource
    hf_endpoint: str | None


def resolve_mirrors(ctx: StepContext) -> MirrorSelection:
    if ctx.mainland:
        mirror = ctx.config.network.mirror
        return MirrorSelection(
            index_url=mirror.pypi_index,
            model_source=mirror.model_source,
            hf_endpoint=mirror.hf_endpoint,
        )
    return MirrorSelection(index_url=None, model_source="huggingface", hf_endpoint=None)


def installer_for(tool: str, platform: str, *, has_brew: bool) -> InstallTool:
    """Pick the package manager for ``tool`` on ``platform``.

    Raises:
        ToolMissing: no supported installer on this platform.
    """
    if platform.startswith("win"):
        return InstallTool(tool=tool, manager="winget")
    if platform == "darwin":
        if has_brew:
            return InstallTool(tool=tool, manager="brew")
        if tool == "uv":
            return InstallTool(tool=tool, manager="script")
        raise ToolMissing("brew", f"Install Homebrew first, then {tool}")
    raise ToolMissing(
        tool, f"{tool} is not installed; install it with your system package manager"
    )


def model_path(ctx: StepContext) -> Path:
    model_dir = ctx.snapshot.model_dir or ctx.config.model.dir
    p = Path(model_dir)
    return p if p.is_absolute() else Path(ctx.repo_dir) / p


# ── Completion checks ───────────────────────────────────────────


def _git_ready(ctx: StepContext) -> bool:
    return ctx.runner.is_available("git") and ctx.runner.is_available("git-lfs")


def _uv_ready(ctx: StepContext) -> bool:
    return ctx.runner.is_available("uv")


def _cloned(ctx: StepContext) -> bool:
    return is_checkout(ctx.repo_dir)


def _clone_target_valid(ctx: StepContext) -> str | None:
    target = Path(ctx.repo_dir)
    if target.exists() and not target.is_dir():
        return f"{target} exists and is not a directory"
    if target.is_dir() and not is_empty_dir(target) and not is_checkout(target):
        return f"{target} is not empty and is not a git repository"
    return None


def _require_checkout(ctx: StepContext) -> str | None:
    if not is_checkout(ctx.repo_dir):
        return f"{ctx.repo_dir} is not a repository checkout"
    return None


def _previously(step_id: str):
    def check(ctx: StepContext) -> bool:
        return _cloned(ctx) and ctx.snapshot.step_succeeded(step_id)
    return check


def _env_synced(ctx: StepContext) -> bool:
    return (
        ctx.snapshot.step_succeeded("sync-env")
        and (Path(ctx.repo_dir) / ".venv").is_dir()
    )


def _tool_needed(source: ModelSource, step_id: str):
    def check(ctx: StepContext) -> bool:
        if resolve_mirrors(ctx).model_source != source:
            return True
        return ctx.snapshot.step_succeeded(step_id)
    return check


def _model_downloaded(ctx: StepContext) -> bool:
    return (model_path(ctx) / ctx.config.model.marker).is_file()


def _repo_cwd(ctx: StepContext) -> str | None:
    return ctx.repo_dir


# ── Command factories ───────────────────────────────────────────


def _install(tool: str):
    def build(ctx: StepContext) -> InstallTool:
        has_brew = ctx.runner.is_available("brew")
        return installer_for(tool, ctx.platform, has_brew=has_brew)
    return build


def _clone(ctx: StepContext) -> CloneRepo:
    return CloneRepo(url=ctx.config.repository.url, target=ctx.repo_dir)


def _sync(ctx: StepContext) -> SyncEnv:
    return SyncEnv(index_url=resolve_mirrors(ctx).index_url)


def _uv_tool(package: str):
    def build(ctx: StepContext) -> InstallUvTool:
        return InstallUvTool(package=package, index_url=resolve_mirrors(ctx).index_url)
    return build


def _download(ctx: StepContext) -> DownloadModel:
    mirrors = resolve_mirrors(ctx)
    return DownloadModel(
        source=mirrors.model_source,
        model_id=ctx.config.model.id,
        local_dir=ctx.snapshot.model_dir or ctx.config.model.dir,
        hf_endpoint=mirrors.hf_endpoint,
    )


def default_steps() -> list[PipelineStep]:
    """The standard provisioning pipeline."""
    return [
        PipelineStep(
            id="install-git",
            label="Install Git and Git LFS",
            order=10,
            command=_install("git"),
            is_complete=_git_ready,
        ),
        PipelineStep(
            id="install-uv",
            label="Install uv",
            order=20,
            command=_install("uv"),
            is_complete=_uv_ready,
        ),
        PipelineStep(
            id="clone-repo",
            label="Clone repository",
            order=30,
            command=_clone,
            is_complete=_cloned,
            precheck=_clone_target_valid,
        ),
        PipelineStep(
            id="lfs-install",
            label="Initialize Git LFS",
            order=40,
            command=lambda ctx: LfsInstall(repo=ctx.repo_dir),
            is_complete=_previously("lfs-install"),
            precheck=_require_checkout,
        ),
        PipelineStep(
            id="lfs-pull",
            label="Fetch LFS objects",
            order=50,
            command=lambda ctx: LfsPull(repo=ctx.repo_dir),
            is_complete=_previously("lfs-pull"),
            precheck=_require_checkout,
        ),
        PipelineStep(
            id="sync-env",
            label="Create Python environment",
            order=60,
            command=_sync,
            is_complete=_env_synced,
            precheck=_require_checkout,
            cwd=_repo_cwd,
        ),
        PipelineStep(
            id="install-hf-cli",
            label="Install HuggingFace CLI",
            order=70,
            command=_uv_tool(HF_CLI_PACKAGE),
            is_complete=_tool_needed("huggingface", "install-hf-cli"),
            cwd=_repo_cwd,
        ),
        PipelineStep(
            id="install-modelscope",
            label="Install ModelScope CLI",
            order=80,
            command=_uv_tool(MODELSCOPE_PACKAGE),
            is_complete=_tool_needed("modelscope", "install-modelscope"),
            cwd=_repo_cwd,
        ),
        PipelineStep(
            id="download-model",
            label="Download model weights",
            order=90,
            command=_download,
            is_complete=_model_downloaded,
            precheck=_require_checkout,
            cwd=_repo_cwd,
        ),
    ]

