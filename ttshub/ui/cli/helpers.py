"""
CLI shared helpers.

Every subcommand builds the hub the same way (hub.yml from ``--config``
or auto-detect, real or mock runner) and reports ``HubError`` the same
way: a red message, the captured log tail, exit code 1.
"""

from __future__ import annotations

import functools
import sys
from pathlib import Path
from typing import Callable, NoReturn, TypeVar

import click

from ttshub.core.config.loader import load_config
from ttshub.core.errors import HubError
from ttshub.core.models.hub import HubConfig
from ttshub.core.models.log import LogLine
from ttshub.core.use_cases.hub import Hub, build_hub

F = TypeVar("F", bound=Callable)


def get_config(ctx: click.Context) -> HubConfig:
    if "hub_config" not in ctx.obj:
        config_path: Path | None = ctx.obj.get("config_path")
        ctx.obj["hub_config"] = load_config(config_path)
    return ctx.obj["hub_config"]


def get_hub(ctx: click.Context) -> Hub:
    """The hub for this invocation (built once, closed on exit)."""
    root = ctx.find_root()
    if "hub" not in root.obj:
        hub = build_hub(get_config(root), mock=root.obj.get("mock", False))
        root.obj["hub"] = hub
        root.call_on_close(hub.close)
    return root.obj["hub"]


def fail(error: HubError) -> NoReturn:
    click.secho(f"❌ {error.message}", fg="red")
    for line in error.log_tail[-10:]:
        click.secho(f"   {line}", fg="bright_black")
    sys.exit(1)


def handle_hub_errors(fn: F) -> F:
    """Turn ``HubError`` into a red message and exit code 1."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):  # type: ignore[no-untyped-def]
        try:
            return fn(*args, **kwargs)
        except HubError as e:
            fail(e)

    return wrapper  # type: ignore[return-value]


_STREAM_COLORS = {"stdout": None, "stderr": "yellow"}


def echo_line(line: LogLine) -> None:
    click.secho(line.render(), fg=_STREAM_COLORS.get(line.stream))
