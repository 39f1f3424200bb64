"""
CLI commands for operator settings.

``show`` prints the loaded hub.yml plus the persisted choices;
``set`` changes one choice in the snapshot.
"""

from __future__ import annotations

import json
import shlex

import click
import yaml

from ttshub.core.config.loader import dump_config
from ttshub.core.errors import ConfigError
from ttshub.ui.cli.helpers import get_hub, handle_hub_errors

_BOOL_KEYS = {"use_deepspeed", "tls"}
_INT_KEYS = {"port"}


def _coerce(key: str, value: str):  # type: ignore[no-untyped-def]
    if key in _BOOL_KEYS:
        lowered = value.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{key} expects true/false, got {value!r}")
    if key in _INT_KEYS:
        try:
            return int(value)
        except ValueError as e:
            raise ConfigError(f"{key} expects an integer, got {value!r}") from e
    if key == "extra_flags":
        return shlex.split(value)
    return value


@click.group()
def config() -> None:
    """Show and change settings."""


@config.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def show(ctx: click.Context, as_json: bool) -> None:
    """Show hub.yml and the current operator choices."""
    hub = get_hub(ctx)
    snap = hub.snapshot()
    settings = {
        "network_environment": snap.network_environment,
        "has_dedicated_gpu": snap.has_dedicated_gpu,
        "repo_dir": hub.repo_dir,
        "model_dir": snap.model_dir,
        "service": hub.service_config().model_dump(mode="json"),
    }

    if as_json:
        click.echo(json.dumps({
            "hub": hub.config.model_dump(mode="json", exclude={"root"}),
            "settings": settings,
        }, indent=2))
        return

    click.secho("# hub.yml", fg="bright_black")
    click.echo(dump_config(hub.config).rstrip())
    click.echo()
    click.secho("# settings", fg="bright_black")
    click.echo(yaml.safe_dump(settings, sort_keys=False).rstrip())


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
@handle_hub_errors
def set_value(ctx: click.Context, key: str, value: str) -> None:
    """Change one setting, e.g. ``ttshub config set port 7861``."""
    get_hub(ctx).update_settings(**{key: _coerce(key, value)})
    click.secho(f"✅ {key} = {value}", fg="green")
