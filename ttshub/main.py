"""
ttshub — CLI entrypoint.

Usage:
    ttshub --help
    ttshub env
    ttshub pipeline run
    ttshub service start
    ttshub update check
    ttshub web --mock
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from ttshub import __version__
from ttshub.core.observability.logging_config import resolve_level, setup_from_env
from ttshub.ui.cli.helpers import get_hub, handle_hub_errors


@click.group()
@click.version_option(version=__version__, prog_name="ttshub")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to hub.yml (default: auto-detect).",
)
@click.option("--mock", is_flag=True, help="Simulate every command (no real execution).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    mock: bool,
) -> None:
    """ttshub — provision and run a local TTS inference service."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["mock"] = mock

    # ── Logging setup (once, at process start) ──────────────────
    setup_from_env(resolve_level(debug=debug, verbose=verbose, quiet=quiet), debug=debug)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def env(ctx: click.Context, as_json: bool) -> None:
    """Check prerequisites, GPU and disk space."""
    report = get_hub(ctx).check_environment()

    if as_json:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    def mark(ok: bool) -> str:
        return click.style("✓", fg="green") if ok else click.style("✗", fg="red")

    t = report.tools
    click.secho("\n🧰 Tools", fg="cyan", bold=True)
    click.echo(f"   {mark(t.git_installed)} git")
    click.echo(f"   {mark(t.git_lfs_installed)} git-lfs")
    click.echo(f"   {mark(t.uv_installed)} uv")
    click.echo(f"   {mark(t.python_installed)} python")
    click.echo(f"   {mark(t.cuda_toolkit_installed)} CUDA toolkit (nvcc)")

    g = report.gpu
    click.secho("\n🎮 GPU", fg="cyan", bold=True)
    if g.has_cuda:
        vram = f"{g.vram_gb} GB" if g.vram_gb is not None else "unknown VRAM"
        click.echo(f"   {g.name} ({vram})")
        if g.recommended_fp16:
            click.secho("   fp16 recommended", fg="green")
    else:
        click.secho("   No CUDA GPU detected; the worker will run on CPU", fg="yellow")

    s = report.system
    click.secho("\n💻 System", fg="cyan", bold=True)
    click.echo(f"   {s.os}")
    click.echo(f"   {s.cpu_brand} ({s.cpu_cores or '?'} cores)")
    click.echo(f"   Disk: {s.available_disk_gb} GB free of {s.total_disk_gb} GB")

    if not t.ready_for_setup:
        click.echo()
        click.secho("   ⚠️  git and uv are required; `ttshub pipeline run` installs them", fg="yellow")
    click.echo()


@cli.command()
@click.option("-n", "count", default=20, type=int, help="Number of entries.")
@click.option("--kind", type=click.Choice(["pipeline", "service"]), default=None)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def history(ctx: click.Context, count: int, kind: str | None, as_json: bool) -> None:
    """Show recent pipeline runs and service transitions."""
    entries = get_hub(ctx).ledger.read_recent(count, kind=kind)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No history yet.")
        return

    for e in entries:
        color = "red" if e.error_kind or e.status in ("aborted", "error") else "white"
        click.echo(f"{e.timestamp[:19]}  {e.kind:<8} ", nl=False)
        click.secho(f"{e.status:<9}", fg=color, nl=False)
        click.echo(f" {e.message}")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", default=8000, type=int, help="Port number.")
@click.option("--mock", is_flag=True, help="Simulate every command (no real execution).")
@click.pass_context
@handle_hub_errors
def web(ctx: click.Context, host: str, port: int, mock: bool) -> None:
    """Start the HTTP control API with its SSE log stream."""
    from ttshub.ui.web.server import create_app, run_server

    if mock:
        ctx.obj["mock"] = True
    hub = get_hub(ctx)
    adopted = hub.adopt_service()

    app = create_app(hub)
    debug = ctx.obj.get("debug", False)

    click.echo()
    click.secho("⚡ ttshub — control API", bold=True)
    click.echo(f"   API:        http://{host}:{port}/api")
    click.echo(f"   Log stream: http://{host}:{port}/api/events")
    click.echo(f"   Repository: {hub.repo_dir}")
    if adopted:
        click.secho(f"   Worker already running at {hub.service_status().endpoint}", fg="green")
    if ctx.obj.get("mock"):
        click.secho("   Mode: mock (no real execution)", fg="yellow")
    click.echo()

    # The hub is closed with the click context (see get_hub).
    run_server(app, host=host, port=port, debug=debug)


# ── Register sub-command groups from ttshub/ui/cli/ ──────────────

from ttshub.ui.cli.config import config  # noqa: E402
from ttshub.ui.cli.pipeline import pipeline  # noqa: E402
from ttshub.ui.cli.service import service  # noqa: E402
from ttshub.ui.cli.update import update  # noqa: E402

cli.add_command(config)
cli.add_command(pipeline)
cli.add_command(service)
cli.add_command(update)


if __name__ == "__main__":
    cli()
