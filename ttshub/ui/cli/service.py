"""
CLI commands for the inference worker.

``start`` runs in the foreground: the worker's output is streamed
until Ctrl+C, which stops it.  ``stop`` and ``status`` first adopt a
worker launched by another process so they see its real state.
"""

from __future__ import annotations

import json
import sys

import click

from ttshub.core.models.service import ServiceState, ServiceStatus
from ttshub.ui.cli.helpers import echo_line, get_hub, handle_hub_errors

_STATE_COLORS = {
    ServiceState.STOPPED: "bright_black",
    ServiceState.STARTING: "cyan",
    ServiceState.RUNNING: "green",
    ServiceState.ERROR: "red",
}


def _echo_status(status: ServiceStatus) -> None:
    click.secho(f"● {status.state.value}", fg=_STATE_COLORS[status.state], bold=True)
    if status.endpoint:
        click.echo(f"   Endpoint: {status.endpoint}")
    if status.pid:
        click.echo(f"   PID:      {status.pid}")
    if status.adopted:
        click.echo("   Adopted:  yes (started by another session)")
    if status.message:
        click.echo(f"   {status.message}")


@click.group()
def service() -> None:
    """Start, stop and inspect the TTS worker."""


@service.command()
@click.pass_context
@handle_hub_errors
def start(ctx: click.Context) -> None:
    """Launch the worker and stream its output (Ctrl+C stops it)."""
    hub = get_hub(ctx)
    if hub.adopt_service():
        click.secho(f"✅ Already running at {hub.service_status().endpoint}", fg="green")
        return

    sub = hub.bus.attach()
    announced = False
    try:
        hub.start_service()
        while True:
            line = sub.pop(timeout=0.5)
            if line is not None:
                echo_line(line)
                continue
            current = hub.service_status()
            if current.state == ServiceState.RUNNING and not announced:
                click.secho(f"\n✅ Serving at {current.endpoint}  (Ctrl+C to stop)\n", fg="green")
                announced = True
            elif current.state in (ServiceState.ERROR, ServiceState.STOPPED):
                while sub.backlog:
                    echo_line(sub.pop(timeout=0))  # type: ignore[arg-type]
                click.secho(f"❌ {current.message}", fg="red")
                sys.exit(1)
    except KeyboardInterrupt:
        click.echo()
        final = hub.stop_service()
        click.secho(f"⏹  {final.message}", fg="yellow")
    finally:
        hub.bus.detach(sub)


@service.command()
@click.pass_context
@handle_hub_errors
def stop(ctx: click.Context) -> None:
    """Stop the worker and release its port."""
    hub = get_hub(ctx)
    hub.adopt_service()
    if hub.service_status().state == ServiceState.STOPPED:
        click.echo("Service is not running.")
        return

    final = hub.stop_service()
    if final.state == ServiceState.ERROR:
        click.secho(f"❌ {final.message}", fg="red")
        sys.exit(1)
    click.secho(f"✅ {final.message}", fg="green")


@service.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the worker's state and endpoint."""
    hub = get_hub(ctx)
    hub.adopt_service()
    current = hub.service_status()
    if as_json:
        click.echo(json.dumps(current.model_dump(mode="json"), indent=2))
        return
    _echo_status(current)
