"""
Cadence CLI entry point.

Commands:
    cadence version  — Show the installed version
    cadence preview  — Print upcoming run times for a recurrence
    cadence jobs     — List jobs in the scheduler database
    cadence show     — Occurrence history of one job
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cadence.core.clock import SystemClock, ensure_utc
from cadence.core.config import CadenceConfig
from cadence.core.errors import CadenceError
from cadence.core.logging import configure_logging

app = typer.Typer(
    name="cadence",
    help="Cadence — recurring job scheduling with retries.",
    add_completion=False,
)

console = Console()


def _load_config(verbose: bool = False) -> CadenceConfig:
    try:
        config = CadenceConfig.load()
    except CadenceError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    configure_logging(config.logging, verbose=verbose)
    return config


def _open_repository(config: CadenceConfig, db: Path | None):
    from cadence.scheduler.store import SQLiteScheduleRepository

    db_path = (db or config.get_db_path()).expanduser()
    if not db_path.exists():
        console.print(f"[yellow]No scheduler database at {db_path}[/yellow]")
        raise typer.Exit(1)
    repo = SQLiteScheduleRepository(db_path)
    repo.initialize()
    return repo


@app.command()
def version() -> None:
    """Show the Cadence version."""
    from cadence import __version__

    console.print(f"cadence {__version__}")


@app.command()
def preview(
    cron: str = typer.Option(None, "--cron", "-c", help="5-field cron expression"),
    every: str = typer.Option(
        None, "--every", "-e", help="Interval unit: minute, hour, day, week, month, year"
    ),
    interval: int = typer.Option(1, "--interval", "-i", help="Units between runs"),
    start: str = typer.Option(None, "--start", "-s", help="First run time (ISO-8601, UTC)"),
    count: int = typer.Option(5, "--count", "-n", help="How many run times to print"),
) -> None:
    """Print the next run times a recurrence would produce."""
    from cadence.scheduler.recurrence import ScheduleRecurrence
    from cadence.scheduler.recurrence_engine import RecurrenceEngine

    if bool(cron) == bool(every):
        console.print("[red]Pass exactly one of --cron or --every[/red]")
        raise typer.Exit(1)

    try:
        recurrence = (
            ScheduleRecurrence.cron(cron)
            if cron
            else ScheduleRecurrence.every(every.lower(), interval)
        )
        current = ensure_utc(datetime.fromisoformat(start)) if start else SystemClock().now()
    except (CadenceError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    engine = RecurrenceEngine()
    console.print(f"[bold]{recurrence.description}[/bold]")
    for n in range(1, count + 1):
        nxt = engine.calculate_next_run_time(current, recurrence, n)
        if nxt is None:
            break
        console.print(f"  {n:>3}. {nxt.isoformat()}")
        current = nxt


@app.command()
def jobs(
    status: str = typer.Option(None, "--status", help="Filter by status"),
    db: Path = typer.Option(None, "--db", help="Scheduler database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """List jobs in the scheduler database."""
    from cadence.scheduler.job import JobStatus

    config = _load_config(verbose)
    try:
        wanted = JobStatus(status.lower()) if status else None
    except ValueError:
        valid = ", ".join(s.value for s in JobStatus)
        console.print(f"[red]Unknown status {status!r}. Valid: {valid}[/red]")
        raise typer.Exit(1)

    repo = _open_repository(config, db)
    try:
        rows = repo.get_all(status=wanted)
    finally:
        repo.close()

    if not rows:
        console.print("[dim]No jobs.[/dim]")
        return

    table = Table(title="Scheduled jobs")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Run at (UTC)")
    table.add_column("Retries", justify="right")
    table.add_column("Occurrence", justify="right")
    table.add_column("Recurrence")
    for job in rows:
        table.add_row(
            job.id,
            job.job_type,
            job.status.value,
            job.run_at.strftime("%Y-%m-%d %H:%M:%S"),
            f"{job.retry_count}/{job.max_retries}",
            str(job.occurrence_count),
            job.recurrence.description if job.recurrence else "once",
        )
    console.print(table)


@app.command()
def show(
    job_id: str = typer.Argument(..., help="Job id (ULID)"),
    db: Path = typer.Option(None, "--db", help="Scheduler database path"),
) -> None:
    """Show every occurrence of a job with its last result."""
    config = _load_config()
    repo = _open_repository(config, db)
    try:
        history = repo.history(job_id)
    finally:
        repo.close()

    if not history:
        console.print(f"[red]No job with id {job_id}[/red]")
        raise typer.Exit(1)

    first = history[0]
    console.print(f"[bold]{first.id}[/bold]  {first.job_type} → {first.target_id}")
    for job in history:
        result = job.last_result
        outcome = "-"
        if result is not None:
            outcome = "ok" if result.success else f"error: {result.error}"
        console.print(
            f"  #{job.occurrence_count}  {job.status.value:<17} "
            f"{job.run_at.isoformat()}  retries={job.retry_count}  {outcome}"
        )


if __name__ == "__main__":
    app()
