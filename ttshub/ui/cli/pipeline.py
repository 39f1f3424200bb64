"""
CLI commands for the provisioning pipeline.

Thin wrappers over ``Hub.run_pipeline`` and the snapshot's step
outcomes.  ``run`` streams every step's output to the terminal while
the pipeline works in a background thread.
"""

from __future__ import annotations

import json
import sys
import threading

import click

from ttshub.core.errors import HubError
from ttshub.core.models.pipeline import PipelineReport, StepOutcome, StepStatus
from ttshub.ui.cli.helpers import echo_line, fail, get_hub, handle_hub_errors

_STATUS_STYLE = {
    StepStatus.PENDING: ("·", "bright_black"),
    StepStatus.RUNNING: ("…", "cyan"),
    StepStatus.SUCCESS: ("✓", "green"),
    StepStatus.FAILED: ("✗", "red"),
}


def _echo_outcome(label: str, outcome: StepOutcome | None) -> None:
    status = outcome.status if outcome else StepStatus.PENDING
    icon, color = _STATUS_STYLE[status]
    click.secho(f"   {icon} ", fg=color, nl=False)
    click.echo(label, nl=False)
    if outcome and outcome.skipped:
        click.secho("  (already satisfied)", fg="bright_black", nl=False)
    elif outcome and outcome.status == StepStatus.FAILED and outcome.exit_message:
        click.secho(f"  {outcome.exit_message}", fg="red", nl=False)
    click.echo()


@click.group()
def pipeline() -> None:
    """Provisioning pipeline: install tools, clone, sync, download."""


@pipeline.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the report as JSON.")
@click.pass_context
@handle_hub_errors
def run(ctx: click.Context, as_json: bool) -> None:
    """Run every step that is not already satisfied."""
    hub = get_hub(ctx)
    result: dict[str, PipelineReport | HubError] = {}

    def work() -> None:
        try:
            result["report"] = hub.run_pipeline()
        except HubError as e:
            result["error"] = e

    sub = hub.bus.attach()
    thread = threading.Thread(target=work, name="pipeline-run", daemon=True)
    thread.start()
    try:
        while thread.is_alive() or sub.backlog:
            line = sub.pop(timeout=0.2)
            if line is not None and not as_json:
                echo_line(line)
    except KeyboardInterrupt:
        click.secho("\n⏹  Aborting after the current step…", fg="yellow")
        hub.abort_pipeline()
        thread.join()
    finally:
        hub.bus.detach(sub)

    if "error" in result:
        fail(result["error"])  # type: ignore[arg-type]

    report: PipelineReport = result["report"]  # type: ignore[assignment]
    if as_json:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        sys.exit(0 if report.ok else 1)

    click.echo()
    labels = {s.id: s.label for s in hub.executor.steps}
    for outcome in report.outcomes:
        _echo_outcome(labels.get(outcome.step_id, outcome.step_id), outcome)
    click.echo()

    if report.ok:
        click.secho(f"✅ {report.message} ({report.invocations} command(s) run)", fg="green")
        return
    click.secho(f"❌ {report.message}", fg="red")
    click.echo("   Fix the problem and re-run; completed steps are skipped.")
    sys.exit(1)


@pipeline.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
@handle_hub_errors
def status(ctx: click.Context, as_json: bool) -> None:
    """Show the last run and every step's outcome."""
    hub = get_hub(ctx)
    snap = hub.snapshot()

    if as_json:
        click.echo(json.dumps({
            "last_run": snap.last_run.model_dump(mode="json"),
            "steps": {k: v.model_dump(mode="json") for k, v in snap.steps.items()},
        }, indent=2))
        return

    run_ = snap.last_run
    click.secho(f"📋 Last run: {run_.status.value}", bold=True)
    if run_.run_id:
        click.echo(f"   {run_.run_id}  {run_.message}")
    click.echo()
    for step in hub.executor.steps:
        _echo_outcome(step.label, snap.steps.get(step.id))


@pipeline.command("steps")
@click.pass_context
def list_steps(ctx: click.Context) -> None:
    """List the step catalogue in execution order."""
    for step in get_hub(ctx).executor.steps:
        click.echo(f"   {step.id:<22} {step.label}")
