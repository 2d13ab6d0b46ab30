"""
Reactor CLI.

Operator commands for the event bus: run workers, release scheduled jobs,
inspect the schedule / subscribers / dead letters, publish by hand, and
check Redis and database health.

Bus commands load the application's bus with ``--app module:attribute``
(the attribute may be a ``Reactor`` or a zero-argument factory returning one).
"""

import importlib
import json
import signal
import time

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from reactor import Reactor
from reactor.clock import as_utc
from reactor.errors import ReactorError
from reactor.queue import RedisJobQueue, Worker
from shared.config.logging import setup_logging
from shared.infrastructure.db import get_db_context
from shared.infrastructure.redis_pool import check_redis_sync_health, close_redis_sync_client

app = typer.Typer(
    name="reactor",
    help="Reactor event bus CLI",
    add_completion=False,
)
console = Console()

APP_OPTION = typer.Option(..., "--app", "-a", envvar="REACTOR_APP", help="Bus location, as module:attribute")


def load_bus(location: str) -> Reactor:
    """Import ``module:attribute`` and return the bus it names."""
    module_name, _, attribute = location.partition(":")
    if not module_name or not attribute:
        raise typer.BadParameter(f"Expected module:attribute, got '{location}'")

    try:
        target = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise typer.BadParameter(f"Cannot load {location}: {e}") from e

    bus = target if isinstance(target, Reactor) else target()
    if not isinstance(bus, Reactor):
        raise typer.BadParameter(f"{location} did not produce a Reactor")
    return bus


def redis_queue(bus: Reactor) -> RedisJobQueue:
    if not isinstance(bus.queue, RedisJobQueue):
        console.print(f"[red]✗ {type(bus.queue).__name__} is not a Redis queue[/red]")
        raise typer.Exit(1)
    return bus.queue


# =============================================================================
# Worker Commands
# =============================================================================

@app.command()
def worker(
    app_location: str = APP_OPTION,
    queue: list[str] = typer.Option(None, "--queue", "-q", help="Lanes to work (repeatable)"),
    poll_interval: float = typer.Option(None, help="Seconds between scheduled-set polls"),
):
    """Run a worker until interrupted."""
    setup_logging()
    bus = load_bus(app_location)

    errors = bus.settings.validate_production()
    if errors:
        for error in errors:
            console.print(f"[red]✗ {error}[/red]")
        console.print("[red]Worker will not start with an unsafe production configuration[/red]")
        raise typer.Exit(1)

    bus.registry.freeze()

    lanes = queue or [bus.event_queue_name()]
    runner = Worker(redis_queue(bus), bus.run_job, lanes, poll_interval)

    def _shutdown(signum, frame):
        console.print("[yellow]Stopping worker...[/yellow]")
        runner.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    console.print(f"[blue]Working lanes: {', '.join(lanes)}[/blue]")
    try:
        runner.run()
    finally:
        close_redis_sync_client()
    console.print("[green]✓ Worker stopped[/green]")


@app.command()
def poll(
    app_location: str = APP_OPTION,
    batch_size: int = typer.Option(100, help="Max jobs released per round"),
):
    """Release scheduled jobs that are due, once."""
    setup_logging()
    bus = load_bus(app_location)
    moved = redis_queue(bus).enqueue_due(batch_size=batch_size)
    console.print(f"[green]✓ Released {moved} scheduled jobs[/green]")


# =============================================================================
# Inspection Commands
# =============================================================================

@app.command()
def scheduled(
    app_location: str = APP_OPTION,
    event: str = typer.Option(None, "--event", "-e", help="Only jobs for this event name"),
    limit: int = typer.Option(50, help="Max rows"),
):
    """List jobs waiting in the scheduled set."""
    bus = load_bus(app_location)

    table = Table(title="Scheduled Jobs")
    table.add_column("At", style="cyan")
    table.add_column("Job Class", style="green")
    table.add_column("Event", style="yellow")
    table.add_column("Lane")
    table.add_column("JID", style="dim")

    rows = 0
    for job in bus.queue.scan_scheduled():
        name = job.args[0] if job.args else ""
        if event and name != event:
            continue
        table.add_row(_format_score(job.score), job.job_class, str(name), job.queue, job.jid)
        rows += 1
        if rows >= limit:
            break

    if rows:
        console.print(table)
    else:
        console.print("[yellow]No scheduled jobs[/yellow]")


@app.command()
def subscribers(app_location: str = APP_OPTION):
    """List declared subscribers."""
    bus = load_bus(app_location)

    table = Table(title="Subscribers")
    table.add_column("Event", style="cyan")
    table.add_column("Job Class", style="green")
    table.add_column("Delay", style="yellow")
    table.add_column("Lane")
    table.add_column("Deprecated", style="red")

    for unit in bus.registry.units():
        table.add_row(
            unit.event_name,
            unit.job_class,
            f"{unit.delay}s" if unit.delay else "-",
            unit.event_queue(),
            "yes" if unit.deprecated else "",
        )

    console.print(table)


@app.command()
def dead_letters(
    app_location: str = APP_OPTION,
    limit: int = typer.Option(20, help="Max rows"),
):
    """Show the most recent dead-lettered jobs."""
    bus = load_bus(app_location)
    entries = redis_queue(bus).dead_letters(limit)
    if not entries:
        console.print("[green]✓ No dead letters[/green]")
        return

    table = Table(title="Dead Letters")
    table.add_column("Job Class", style="cyan")
    table.add_column("Error", style="red")
    table.add_column("Message")
    table.add_column("Failed At", style="dim")

    for entry in entries:
        table.add_row(
            entry.get("class", ""),
            entry.get("error_class", ""),
            entry.get("error_message", ""),
            _format_score(entry.get("failed_at")),
        )

    console.print(table)


# =============================================================================
# Publishing
# =============================================================================

@app.command()
def publish(
    name: str = typer.Argument(..., help="Event name"),
    app_location: str = APP_OPTION,
    data: str = typer.Option("{}", "--data", "-d", help="Event data as a JSON object"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the production confirmation prompt"),
):
    """Publish an event by hand."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--data is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise typer.BadParameter("--data must be a JSON object")

    bus = load_bus(app_location)
    if bus.settings.environment == "production":
        if not yes and not typer.confirm(f"Publish '{name}' to every production subscriber?"):
            raise typer.Exit(1)
        payload["confirmed"] = True

    try:
        jid = bus.publish(name, payload)
    except ReactorError as e:
        console.print(f"[red]✗ {e.detail}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Published {name} (job {jid})[/green]")


# =============================================================================
# Health Commands
# =============================================================================

@app.command()
def health():
    """Check Redis and the entity store database."""
    table = Table(title="Service Health")
    table.add_column("Service", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Response Time", style="yellow")

    redis_status = check_redis_sync_health()
    if redis_status["status"] == "healthy":
        table.add_row("Redis", "✓ Healthy", f"{redis_status['latency_ms']:.0f}ms")
    else:
        table.add_row("Redis", f"✗ {redis_status['error']}", "-")

    start = time.perf_counter()
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        table.add_row("Database", "✓ Healthy", f"{(time.perf_counter() - start) * 1000:.0f}ms")
    except SQLAlchemyError as e:
        table.add_row("Database", f"✗ {type(e).__name__}", "-")

    console.print(table)


def _format_score(score) -> str:
    if not score:
        return "N/A"
    return as_utc(score).isoformat(timespec="seconds")


if __name__ == "__main__":
    app()
