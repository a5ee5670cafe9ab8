"""CLI commands for Carebook.

These commands are the periodic trigger for the maintenance jobs: a cron
entry or systemd timer runs ``carebook generate-all`` and ``carebook cleanup``
on a fixed cadence. Storage outages are retried here, not in the core.
"""

import asyncio
import json
import uuid
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from carebook.config import get_settings
from carebook.scheduling.errors import SchedulingError, TransientError
from carebook.scheduling.models import DAY_NAMES, BatchReport

app = typer.Typer(
    name="carebook",
    help="Clinician availability, slot inventory and booking",
    add_completion=False,
)
console = Console()

PARTIAL_EXIT_CODE = 2


def get_maintenance_scheduler():
    """Get a maintenance scheduler bound to the configured database."""
    from carebook.core.database import get_session_factory
    from carebook.scheduling.maintenance import MaintenanceScheduler

    return MaintenanceScheduler(get_session_factory())


def _run_with_retries(job: Callable[[], Awaitable[Any]]) -> Any:
    """Run an async maintenance job, retrying while storage is unavailable."""
    settings = get_settings()

    @retry(
        retry=retry_if_exception_type(TransientError),
        stop=stop_after_attempt(settings.trigger_max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def attempt():
        return await job()

    return asyncio.run(attempt())


def _run_job(description: str, job: Callable[[], Awaitable[Any]]) -> Any:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        try:
            return _run_with_retries(job)
        except SchedulingError as e:
            console.print(f"[red]{type(e).__name__}: {e.message}[/red]")
            raise typer.Exit(1)


def _print_json(result: BaseModel) -> None:
    typer.echo(result.model_dump_json(indent=2))


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid {name}: {value} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(1)


def _parse_clinician(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid clinician id: {value}[/red]")
        raise typer.Exit(1)


@app.command()
def init_db():
    """Create the scheduling tables (development databases)."""
    from carebook.core.database import init_db as create_tables

    asyncio.run(create_tables())
    console.print(f"[green]Database ready: {get_settings().database_url}[/green]")


@app.command()
def generate_all(
    days_ahead: Optional[int] = typer.Option(
        None, "--days-ahead", "-d", help="Days ahead of today to cover"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Generate slots for every active clinician."""
    scheduler = get_maintenance_scheduler()
    report: BatchReport = _run_job(
        "Generating slots...", lambda: scheduler.generate_for_all_clinicians(days_ahead)
    )

    if output_json:
        _print_json(report)
    else:
        _display_batch_report(report)

    if report.is_partial:
        raise typer.Exit(PARTIAL_EXIT_CODE)


def _display_batch_report(report: BatchReport) -> None:
    table = Table(title=f"Slot generation {report.date_range.start_date} to {report.date_range.end_date}")
    table.add_column("Clinician")
    table.add_column("Generated", justify="right")
    table.add_column("Status")

    for result in report.results:
        if result.error is None:
            table.add_row(result.clinician_name, str(result.generated_count), "[green]OK[/green]")
        else:
            table.add_row(result.clinician_name, "-", f"[red]{result.error}[/red]")

    console.print(table)
    console.print(
        f"Total: {report.total_generated} slots for {report.total_clinicians} clinician(s), "
        f"{len(report.failed)} failed"
    )


@app.command()
def cleanup(
    older_than_days: Optional[int] = typer.Option(
        None, "--older-than-days", "-o", help="Delete slots older than this many days"
    ),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Delete slots dated before the retention window."""
    scheduler = get_maintenance_scheduler()
    result = _run_job("Cleaning up old slots...", lambda: scheduler.cleanup_old_slots(older_than_days))

    if output_json:
        _print_json(result)
    else:
        console.print(
            f"[green]Deleted {result.deleted_count} slot(s) dated before {result.cutoff_date}[/green]"
        )


@app.command()
def backfill(
    clinician_id: str = typer.Argument(..., help="Clinician id"),
    start_date: str = typer.Argument(..., help="First date (YYYY-MM-DD)"),
    end_date: str = typer.Argument(..., help="Last date (YYYY-MM-DD)"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Generate slots for dates that should have them but do not."""
    clinician = _parse_clinician(clinician_id)
    start = _parse_date(start_date, "start date")
    end = _parse_date(end_date, "end date")

    scheduler = get_maintenance_scheduler()
    result = _run_job(
        "Backfilling slots...", lambda: scheduler.generate_missing_slots(clinician, start, end)
    )

    if output_json:
        _print_json(result)
        return

    if not result.missing_dates:
        console.print("[green]No missing dates[/green]")
        return
    dates = ", ".join(d.isoformat() for d in result.missing_dates)
    console.print(f"[green]Backfilled {result.total_generated} slot(s) on {dates}[/green]")


@app.command()
def optimize(
    clinician_id: str = typer.Argument(..., help="Clinician id"),
    day: str = typer.Argument(..., help="Date to analyze (YYYY-MM-DD)"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Report fragmented availability for one clinician-day."""
    clinician = _parse_clinician(clinician_id)
    target = _parse_date(day, "date")

    scheduler = get_maintenance_scheduler()
    report = _run_job("Analyzing slots...", lambda: scheduler.optimize_doctor_slots(clinician, target))

    if output_json:
        _print_json(report)
        return

    console.print(f"[bold]{DAY_NAMES[target.weekday()]} {target}[/bold]: {report.total_slots} slot(s)")
    if not report.suggestions:
        console.print("[green]No fragmentation found[/green]")
        return

    table = Table(title="Suggestions")
    table.add_column("Type")
    table.add_column("Slots", justify="right")
    table.add_column("Suggestion")
    for suggestion in report.suggestions:
        table.add_row(suggestion.type.value, str(len(suggestion.slot_ids)), suggestion.suggestion)
    console.print(table)


@app.command()
def stats(
    days_back: int = typer.Option(30, "--days-back", "-d", help="Window size in days"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show slot utilization and appointment counts."""
    scheduler = get_maintenance_scheduler()
    result = _run_job("Collecting statistics...", lambda: scheduler.get_maintenance_stats(days_back))

    if output_json:
        _print_json(result)
        return

    table = Table(title=f"Slots since {result.date_range.start_date}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    slot_stats = result.slot_stats
    table.add_row("Total", str(slot_stats.total))
    table.add_row("Available", str(slot_stats.available))
    table.add_row("Booked", str(slot_stats.booked))
    table.add_row("Blocked", str(slot_stats.blocked))
    table.add_row("Break", str(slot_stats.break_slots))
    table.add_row("Utilization", f"{slot_stats.utilization_rate:.1f}%")
    table.add_row("Active clinicians", str(result.active_clinicians))
    table.add_row("Avg slots / clinician", f"{result.average_slots_per_clinician:.1f}")
    console.print(table)

    if result.appointment_counts:
        console.print(json.dumps(result.appointment_counts, indent=2))


@app.command()
def events(
    log_type: str = typer.Argument("maintenance", help="bookings or maintenance"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of events"),
):
    """Show recent booking or maintenance events."""
    from carebook.observability.logger import get_event_logger

    recent = get_event_logger().get_recent_events(log_type, limit=limit)
    if not recent:
        console.print(f"[yellow]No {log_type} events recorded[/yellow]")
        return

    table = Table(title=f"Recent {log_type} events")
    table.add_column("Time")
    table.add_column("Type")
    table.add_column("Details")
    for event in recent:
        recorded_at = datetime.fromisoformat(event["timestamp"].replace("Z", "+00:00"))
        timestamp = recorded_at.strftime("%Y-%m-%d %H:%M:%S")
        details = event.get("job") or event.get("slot_id") or ""
        if event.get("error_message"):
            details = f"{details} [red]{event['error_message']}[/red]"
        table.add_row(timestamp, event["event_type"], str(details))
    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print(f"Starting Carebook API server on {host}:{port}")
    uvicorn.run(
        "carebook.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version():
    """Show version information."""
    from carebook import __version__

    console.print(f"Carebook v{__version__}")
