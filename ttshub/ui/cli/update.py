"""
CLI commands for tracking upstream revisions of the checkout.
"""

from __future__ import annotations

import json

import click

from ttshub.ui.cli.helpers import get_hub, handle_hub_errors


@click.group()
def update() -> None:
    """Check for and pull upstream changes."""


@update.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def check(ctx: click.Context, as_json: bool) -> None:
    """Compare the local revision with the remote."""
    info = get_hub(ctx).check_update()

    if as_json:
        click.echo(json.dumps(info.model_dump(mode="json"), indent=2))
        return

    click.echo(f"   Local:  {info.local_revision[:12] or '?'}")
    click.echo(f"   Remote: {(info.remote_revision or '?')[:12]}")
    if info.stale:
        click.secho(f"⚠️  {info.message}", fg="yellow")
    elif info.has_update:
        click.secho("⬆️  Update available; run `ttshub update pull`", fg="cyan")
    else:
        click.secho("✅ Up to date", fg="green")


@update.command()
@click.pass_context
@handle_hub_errors
def pull(ctx: click.Context) -> None:
    """Fast-forward the checkout (the service must be stopped)."""
    info = get_hub(ctx).pull_update()
    click.secho(f"✅ {info.message} ({info.local_revision[:12]})", fg="green")
