"""
archsetup — CLI entrypoint.

Usage:
    python -m archsetup.main --help
    python -m archsetup.main run --dry-run
    python -m archsetup.main plan check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from archsetup import __version__
from archsetup.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="archsetup")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to archsetup.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """archsetup — provision an Arch Linux workstation from a plan."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("ARCHSETUP_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("ARCHSETUP_LOG_FILE"),
        log_file_level=os.environ.get("ARCHSETUP_LOG_FILE_LEVEL"),
    )


def _load_settings(ctx: click.Context):
    """Settings for the read-only commands; exits 1 on a bad config."""
    from archsetup.core.config.loader import ConfigError, find_config_file, load_settings

    config_path = ctx.obj.get("config_path") or find_config_file()
    try:
        return load_settings(config_path)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


# ── run ─────────────────────────────────────────────────────────


_STATE_COLORS = {
    "completed": "green",
    "completed_with_failures": "yellow",
    "halted": "red",
    "cancelled": "yellow",
}


def _provision(
    ctx: click.Context,
    plan_source: str | None,
    dry_run: bool,
    mock: bool,
    as_json: bool,
    ask_password: bool,
) -> int:
    """Run the plan, print the summary, return the exit code."""
    from archsetup.core.use_cases.provision import run_provision

    password = None
    if ask_password and not (dry_run or mock):
        password = click.prompt("sudo password", hide_input=True, err=True)

    result = run_provision(
        config_path=ctx.obj.get("config_path"),
        plan_source=plan_source,
        dry_run=dry_run,
        mock_mode=mock,
        sudo_password=password,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return result.exit_code

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        return result.exit_code

    report = result.report
    assert report is not None
    assert result.plan is not None

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}{result.plan.name}", fg="cyan", bold=True)
    click.echo(f"   Steps: {len(result.plan)} | Run: {report.run_id}")
    click.echo()

    # Per-step results
    for step_result in report.results:
        timing = f" ({step_result.duration_ms}ms)" if step_result.duration_ms else ""
        if step_result.ok:
            click.secho(f"   ✓ {step_result.step_id}", fg="green", nl=False)
            click.echo(timing)
            if ctx.obj.get("verbose") and step_result.output:
                for line in step_result.output.split("\n")[-10:]:
                    click.echo(f"     │ {line}")
        elif step_result.failed:
            click.secho(f"   ✗ {step_result.step_id}", fg="red", nl=False)
            click.echo(timing)
            for line in (step_result.reason or "failed").split("\n")[:5]:
                click.echo(f"     │ {line}")
        else:
            click.secho(f"   ⊘ {step_result.step_id} ", fg="yellow", nl=False)
            click.echo(f"({step_result.reason})")

    not_run = len(result.plan) - report.total
    if not_run:
        click.echo()
        click.secho(f"   {not_run} step(s) not run", fg="yellow")

    # Summary
    click.echo()
    click.secho(
        f"   Result: {report.state.value} — "
        f"{report.succeeded} succeeded, {report.skipped} skipped, {report.failed} failed",
        fg=_STATE_COLORS.get(report.state.value, "white"),
        bold=True,
    )
    if report.halted_by:
        click.secho(f"   Halted by critical step: {report.halted_by}", fg="red")
    if report.failed and result.failure_log_path:
        click.echo(f"   Failures logged to {result.failure_log_path}")
    click.echo()

    return report.exit_code


@cli.command()
@click.option("--plan", "plan_source", default=None, help="Plan file, URL, or 'default'.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Check every step, execute none.")
@click.option("--mock", is_flag=True, help="Use mock adapter (no real execution).")
@click.option(
    "--ask-sudo-password",
    "ask_password",
    is_flag=True,
    help="Prompt for the sudo password once, up front.",
)
@click.pass_context
def run(
    ctx: click.Context,
    plan_source: str | None,
    as_json: bool,
    dry_run: bool,
    mock: bool,
    ask_password: bool,
) -> None:
    """Provision this machine from the plan.

    Exit codes: 0 all steps ok, 2 some non-critical steps failed,
    3 halted by a critical step, 130 cancelled, 1 bad config or plan.

    Examples:

        archsetup run --dry-run

        archsetup run --plan progs.csv

        archsetup -c ~/archsetup.yml run --ask-sudo-password
    """
    code = _provision(ctx, plan_source, dry_run, mock, as_json, ask_password)
    sys.exit(code)


@cli.command()
@click.pass_context
def menu(ctx: click.Context) -> None:
    """Interactive menu: install everything or exit."""
    while True:
        click.secho("\nArch Linux Setup", fg="cyan", bold=True)
        click.echo("  1. Install all")
        click.echo("  0. Exit")
        choice = click.prompt(
            "Choose an option",
            type=click.Choice(["1", "0"]),
            show_choices=False,
        )
        if choice == "0":
            click.echo("Bye.")
            return
        _provision(ctx, None, dry_run=False, mock=False, as_json=False, ask_password=False)


# ── plan ────────────────────────────────────────────────────────


@cli.group()
def plan() -> None:
    """Inspect and validate plans."""


@plan.command("show")
@click.option("--plan", "plan_source", default=None, help="Plan file, URL, or 'default'.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan_show(ctx: click.Context, plan_source: str | None, as_json: bool) -> None:
    """List the steps of a plan in execution order."""
    from archsetup.core.config.loader import ConfigError
    from archsetup.core.config.plan_loader import PlanError
    from archsetup.core.use_cases.provision import load_context

    try:
        _settings, loaded, _path = load_context(ctx.obj.get("config_path"), plan_source)
    except (ConfigError, PlanError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(loaded.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n📋 {loaded.name} ({len(loaded)} steps)", fg="cyan", bold=True)
    width = len(str(len(loaded)))
    for index, step in enumerate(loaded.steps, start=1):
        marker = click.style(" [critical]", fg="red") if step.critical else ""
        click.echo(f"   {index:>{width}}. {step.id}{marker}")
        if step.description:
            click.echo(f"   {'':>{width}}  {step.description}")
    click.echo()


@plan.command("check")
@click.option("--plan", "plan_source", default=None, help="Plan file, URL, or 'default'.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan_check(ctx: click.Context, plan_source: str | None, as_json: bool) -> None:
    """Validate a plan without running it."""
    from archsetup.core.use_cases.plan_check import check_plan

    result = check_plan(config_path=ctx.obj.get("config_path"), plan_source=plan_source)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.plan is not None  # guaranteed when valid
        click.secho("✅ Plan is valid", fg="green", bold=True)
        click.echo(f"   Plan: {result.plan.name}")
        click.echo(f"   Steps: {len(result.plan)}")
        critical = [s.id for s in result.plan.steps if s.critical]
        click.echo(f"   Critical: {', '.join(critical) if critical else 'none'}")
    else:
        click.secho("❌ Plan errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(1)


# ── failures & history ──────────────────────────────────────────


@cli.command()
@click.option("--limit", "-n", default=20, type=int, help="Number of records to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def failures(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent entries of the failure log."""
    from archsetup.core.persistence.failure_log import FailureLog

    settings = _load_settings(ctx)
    log = FailureLog(settings.resolved_failure_log)
    records = log.read_recent(limit)

    if as_json:
        click.echo(json.dumps([r.model_dump() for r in records], indent=2))
        return

    if not records:
        click.secho("✅ No failures recorded", fg="green")
        return

    click.secho(f"\n✗ Failures ({log.path})", fg="red", bold=True)
    for record in records:
        click.echo(f"   {record.timestamp}  ", nl=False)
        click.secho(record.step_id, bold=True, nl=False)
        click.echo(f"  {record.reason}")
    click.echo()


@cli.command()
@click.option("--limit", "-n", default=10, type=int, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent provisioning runs."""
    from archsetup.core.persistence.audit import AuditWriter

    settings = _load_settings(ctx)
    entries = AuditWriter(settings.run_history_path).read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded yet.")
        return

    click.secho("\n📜 Recent runs", fg="cyan", bold=True)
    for entry in entries:
        color = _STATE_COLORS.get(entry.state, "white")
        dry = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp[:19]}  {entry.run_id}  ", nl=False)
        click.secho(f"{entry.state}{dry}", fg=color, nl=False)
        click.echo(
            f"  {entry.steps_succeeded} ok, {entry.steps_skipped} skipped, "
            f"{entry.steps_failed} failed"
        )
        if entry.halted_by:
            click.echo(f"     halted by {entry.halted_by}")
    click.echo()


if __name__ == "__main__":
    cli()
