"""
CLI for statistics snapshot calculation, backfill and maintenance.
"""
import asyncio
import functools
import json
import sys
from datetime import date, datetime, time, timezone
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stats_snapshots.commands import BackfillResult, BackfillTask, CalculationReport
from stats_snapshots.config import get_settings
from stats_snapshots.container import StatisticsContainer, build_in_memory_container
from stats_snapshots.exceptions import ConcurrentExecutionError, ValidationError
from stats_snapshots.models import PeriodType
from stats_snapshots.utils.logging import setup_logging

console = Console()
logger = structlog.get_logger(__name__)


def async_command(f):
    """Run an async click command on a fresh event loop."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


# =============================================================================
# CLI GROUP
# =============================================================================

@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-format", type=click.Choice(["json", "console"]), default=None, help="Log output format")
@click.pass_context
def cli(ctx, debug: bool, log_format: Optional[str]):
    """
    Statistics snapshot pipeline.

    Computes overview, posts, users and popular snapshots per period and
    backfills history.
    """
    settings = get_settings()
    setup_logging(
        level="DEBUG" if debug or settings.debug else settings.log_level,
        format_type=log_format or settings.log_format,
    )
    ctx.ensure_object(dict)
    ctx.obj.setdefault("container_factory", build_in_memory_container)


def _container(ctx) -> StatisticsContainer:
    return ctx.obj["container_factory"]()


# =============================================================================
# CALCULATE
# =============================================================================

@cli.command()
@click.option(
    "--period", "-p", "periods",
    multiple=True,
    default=("daily",),
    show_default=True,
    help="Period granularity (repeatable): daily, weekly, monthly",
)
@click.option("--max-retries", type=int, default=None, help="Retries per snapshot (default from settings)")
@click.option("--force", is_flag=True, help="Recompute snapshots that already exist")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
@async_command
async def calculate(ctx, periods: tuple[str, ...], max_retries: Optional[int], force: bool, as_json: bool):
    """
    Compute snapshots for the last complete period(s).

    Examples:

        stats-snapshots calculate

        stats-snapshots calculate -p daily -p weekly --force
    """
    container = _container(ctx)
    command = container.calculation_command()
    retries = container.settings.retry_max_attempts if max_retries is None else max_retries

    try:
        report = await command.execute(list(periods), max_retries=retries, force=force)
    except ValidationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    except ConcurrentExecutionError as e:
        console.print(f"[yellow]✗ {e}[/yellow]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(command.summary(report), indent=2))
    else:
        _display_report(report)
    sys.exit(0 if report.ok else 1)


def _display_report(report: CalculationReport) -> None:
    table = Table(title="Statistics Calculation")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total snapshots", str(report.total_snapshots))
    table.add_row("Successful", f"[green]{report.successful_snapshots}[/green]")
    table.add_row("Skipped (existing)", str(report.skipped_snapshots))
    table.add_row("Failed", f"[red]{report.failed_snapshots}[/red]" if report.failed_snapshots else "0")
    table.add_row("Retries", str(report.retries))
    table.add_row("Duration (ms)", str(report.duration_ms))
    console.print(table)

    if report.errors:
        errors = Table(title="Failures")
        errors.add_column("Type", style="magenta")
        errors.add_column("Period")
        errors.add_column("Retries", justify="right")
        errors.add_column("Error", style="red")
        for failure in report.errors:
            item = failure.to_dict()
            errors.add_row(item["type"], f"{item['period_type']} {item['period']}", str(item["retries"]), item["error"])
        console.print(errors)


# =============================================================================
# BACKFILL
# =============================================================================

@cli.command()
@click.argument("snapshot_type", required=False)
@click.argument("start_date", required=False)
@click.argument("end_date", required=False)
@click.option("--force", is_flag=True, help="Overwrite snapshots that already exist")
@click.option("--batch-size", type=int, default=None, help="Days per batch (1-365)")
@click.option("--dry-run", is_flag=True, help="Show the task plan without computing")
@click.pass_context
@async_command
async def backfill(
    ctx,
    snapshot_type: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str],
    force: bool,
    batch_size: Optional[int],
    dry_run: bool,
):
    """
    Recompute daily snapshots over a historical date range.

    SNAPSHOT_TYPE is overview, posts, users, popular or all (default all).
    Dates are YYYY-MM-DD; the default range is the last 30 days ending
    yesterday.

    Examples:

        stats-snapshots backfill overview 2024-01-01 2024-01-31 --dry-run

        stats-snapshots backfill all 2024-01-01 2024-03-31 --batch-size 7 --force
    """
    container = _container(ctx)
    command = container.backfill_command()

    try:
        config = command.build_config(snapshot_type, start_date, end_date, force, batch_size, dry_run)
    except ValidationError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    info = command.describe(config)
    console.print(Panel(
        f"Types: {', '.join(info['types'])}\n"
        f"Range: {info['start_date']} → {info['end_date']} ({info['days']} days)\n"
        f"Batch size: {info['batch_size']}  Force: {info['force']}",
        title="Dry run" if dry_run else "Backfill",
        style="bold blue",
    ))

    if dry_run:
        tasks = await command.preview(config)
        _display_tasks(tasks, force)
        to_process = sum(1 for t in tasks if t.will_process(force))
        console.print(f"\n[dim]{to_process} of {len(tasks)} tasks would be processed[/dim]")
        sys.exit(0)

    result = await command.run(config)
    _display_backfill_result(result)
    sys.exit(result.exit_code)


def _display_tasks(tasks: list[BackfillTask], force: bool) -> None:
    table = Table(title="Backfill Tasks")
    table.add_column("Type", style="magenta")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Exists", justify="center")
    table.add_column("Action", style="green")
    for task in tasks:
        status = task.status(force)
        table.add_row(
            task.snapshot_type.value,
            task.batch_start.isoformat(),
            task.batch_end.isoformat(),
            "Yes" if task.exists_already else "No",
            status if status == "process" else f"[dim]{status}[/dim]",
        )
    console.print(table)


def _display_backfill_result(result: BackfillResult) -> None:
    if result.ok:
        console.print("[bold green]✓ Backfill complete[/bold green]")
    else:
        console.print("[bold red]✗ Backfill finished with failures[/bold red]")
    console.print(
        f"Success: {result.success}  Failed: {result.failed}  Skipped: {result.skipped}  "
        f"Days created: {result.days_created}"
    )
    for error in result.errors:
        console.print(
            f"  [red]{error['type']} {error['batch_start']}..{error['batch_end']}: {error['error']}[/red]"
        )


# =============================================================================
# MAINTENANCE
# =============================================================================

@cli.command()
@click.option("--before", "before", default=None, help="Remove snapshots expired on or before this date (YYYY-MM-DD)")
@click.pass_context
@async_command
async def cleanup(ctx, before: Optional[str]):
    """Remove expired snapshots."""
    container = _container(ctx)
    cutoff = None
    if before:
        try:
            cutoff = datetime.combine(date.fromisoformat(before), time.max, tzinfo=timezone.utc)
        except ValueError:
            console.print(f"[red]✗ Invalid date: {before}[/red]")
            sys.exit(1)
    removed = await container.aggregation_service.clean_expired_snapshots(cutoff)
    logger.info("cleanup_complete", removed=removed, before=before)
    console.print(f"[green]✓ Removed {removed} expired snapshot(s)[/green]")


@cli.command()
@click.pass_context
def schedule(ctx):
    """Run the calculation scheduler until interrupted."""
    from stats_snapshots.scheduler import run_scheduler

    container = _container(ctx)
    if not container.settings.schedule_enabled:
        console.print("[yellow]Scheduling is disabled (STATS_SCHEDULE_ENABLED=false)[/yellow]")
        sys.exit(1)
    console.print(Panel("Starting statistics scheduler", style="bold blue"))
    asyncio.run(run_scheduler(container))


@cli.command()
def config():
    """Show the effective configuration."""
    settings = get_settings()
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))
    table.add_row("retry_schedule", ", ".join(f"{d:g}s" for d in settings.retry_schedule) or "-")
    table.add_row("periods", ", ".join(p.value for p in PeriodType))
    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
