"""
Bootstrap command for idlsync.

Runs one sync: refresh every remote into the cache, extract and rename
their IDL files, aggregate them and publish the result upstream.
"""

import dataclasses
import json
import sys
from typing import Optional

import click

from ..config import configure_logging, load_config, load_settings
from ..domain import RunReport, RunStage
from ..exit_codes import (
    SUCCESS,
    INTERRUPTED,
    CommandError,
    CollisionError,
    ConfigError,
    NoSourcesAvailableError,
    PartialSuccessError,
)
from ..services.bootstrap_service import BootstrapService


def check_report(report: RunReport, strict: bool = False) -> None:
    """
    Raise the CommandError matching a finished run, if any.

    Raises:
        PartialSuccessError: Published with some sources excluded (strict only)
        CollisionError: Collisions were escalated to a failure
        ConfigError: No sources are configured
        NoSourcesAvailableError: No source could be refreshed or extracted
        CommandError: Any other failure
    """
    if report.success:
        if strict and report.source_errors:
            failed = len(report.source_errors)
            raise PartialSuccessError(
                f"{failed} source(s) failed: {', '.join(e.source for e in report.source_errors)}",
                succeeded=len(report.sources) - failed,
                failed=failed,
            )
        return

    error = report.error or "bootstrap failed"
    if error == "cancelled":
        raise CommandError(error, INTERRUPTED)
    if report.failed_stage == RunStage.AGGREGATED and report.collisions:
        raise CollisionError(error, names=[c.public_name for c in report.collisions])
    if not report.sources:
        raise ConfigError(error)
    if report.failed_stage in (RunStage.CACHE_READY, RunStage.EXTRACTED):
        raise NoSourcesAvailableError(error)
    raise CommandError(error)


@click.command('bootstrap')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Configuration file (default: ./idlsync.json or ~/.idlsync/)')
@click.option('--no-push', is_flag=True, help='Commit locally but do not push upstream')
@click.option('--allow-empty', is_flag=True, help='Commit even when nothing changed')
@click.option('--json', 'output_json', is_flag=True, help='Print only the JSON report (no progress)')
@click.option('--pretty', is_flag=True, help='Rich formatted output with progress and tables')
@click.option('--strict', is_flag=True, help='Exit non-zero when any source failed')
@click.option('--debug', is_flag=True, help='Enable debug logging')
def bootstrap_handler(
    config_path: Optional[str],
    no_push: bool,
    allow_empty: bool,
    output_json: bool,
    pretty: bool,
    strict: bool,
    debug: bool,
):
    """
    Sync all configured remotes into the upstream IDL registry.

    Every remote is refreshed in the cache, its IDL files are renamed with
    the configured fileNameStrategy, and the merged tree is committed with
    a meta.json provenance record and pushed.

    A source that fails is excluded from this run and reported; the run
    still publishes what the other sources provide. Use --strict to turn
    that into a non-zero exit.

    \b
    Examples:
        # Sync using ./idlsync.json
        idlsync bootstrap
        # Use a specific config and keep the commit local
        idlsync bootstrap --config registry.yaml --no-push
        # Tables and a spinner instead of plain progress
        idlsync bootstrap --pretty

    \b
    Exit codes:
        0   published (or nothing to publish)
        64  no remote source could be refreshed
        66  configuration missing or invalid (including no remotes)
        70  collisions with aggregation.fail_on_collision set
        71  published, but some sources failed (--strict only)
        130 interrupted
        1   any other failure
    """
    try:
        configure_logging(load_config(config_path), debug=debug)
        settings = load_settings(config_path)
    except CommandError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)

    overrides = {}
    if no_push:
        overrides['push'] = False
    if allow_empty:
        overrides['allow_empty_commits'] = True
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    service = BootstrapService(settings)

    try:
        if pretty:
            report = _bootstrap_pretty(service)
        elif output_json:
            report = _bootstrap_json(service)
        else:
            report = _bootstrap_simple(service)
    except KeyboardInterrupt:
        service.cancel()
        click.echo("Interrupted", err=True)
        sys.exit(INTERRUPTED)

    try:
        check_report(report, strict=strict)
    except CommandError as e:
        if not output_json:
            click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)
    sys.exit(SUCCESS)


def _bootstrap_simple(service: BootstrapService) -> RunReport:
    """Plain progress on stderr, JSON report on stdout."""
    for progress in service.run():
        print(progress, file=sys.stderr)

    report = service.last_report
    print(json.dumps(report.to_dict()), flush=True)
    return report


def _bootstrap_json(service: BootstrapService) -> RunReport:
    """JSON report only."""
    list(service.run())

    report = service.last_report
    print(json.dumps(report.to_dict()), flush=True)
    return report


def _bootstrap_pretty(service: BootstrapService) -> RunReport:
    """Rich formatted output for bootstrap."""
    from rich.console import Console
    from rich.progress import Progress, SpinnerColumn, TextColumn

    from ..render import render_report

    console = Console()

    console.print("\n[bold]IDL Bootstrap[/bold]")
    console.print(f"[bold]Upstream:[/bold] {service.settings.upstream} ({service.settings.upstream_branch})")
    console.print(f"[bold]Remotes:[/bold] {len(service.settings.sources)}")
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Starting...", total=None)

        for message in service.run():
            progress.update(task, description=message)

    report = service.last_report
    render_report(report, out=console)
    return report
