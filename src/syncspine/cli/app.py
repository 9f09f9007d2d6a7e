"""
Root Typer application for the SyncSpine CLI.
"""

from __future__ import annotations

import time

import typer
from rich.table import Table

from syncspine.cli.utils import console, err_console, format_timestamp, make_service
from syncspine.core.errors import SyncError
from syncspine.core.models import SchedulingSettings

app = typer.Typer(
    name="syncspine",
    help="SyncSpine: scheduled connector syncs into a search index.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DB_OPTION = typer.Option(None, "--db", "-d", help="SQLite database path (default: settings)")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("syncspine")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"syncspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """SyncSpine CLI: run sync loops, trigger syncs, inspect connectors."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run(
    db: str | None = DB_OPTION,
    connector_id: str | None = typer.Option(
        None, "--connector-id", "-c", help="Only schedule this connector"
    ),
    duration: float | None = typer.Option(
        None, "--duration", help="Stop after this many seconds (default: until Ctrl-C)"
    ),
) -> None:
    """Start the scheduler and the job consumer.

    Example::

        syncspine run
        syncspine run --connector-id 3f2a... --duration 60
    """
    service = make_service(db, connector_id)
    settings = service.settings
    console.print(
        f"[bold green]Starting syncspine[/bold green] "
        f"(threads={settings.max_threads}, poll={settings.poll_interval}s, "
        f"scheduler={settings.scheduler_poll_interval}s)"
    )
    service.start()
    try:
        deadline = time.monotonic() + duration if duration else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted, shutting down[/yellow]")
    finally:
        clean = service.stop()
    if not clean:
        err_console.print("[yellow]Some jobs were still running at shutdown[/yellow]")


@app.command("sync-now")
def sync_now(
    connector_id: str = typer.Argument(..., help="Connector to sync"),
    db: str | None = DB_OPTION,
) -> None:
    """Request an immediate sync of a connector."""
    service = make_service(db)
    try:
        job = service.sync_now(connector_id)
    except SyncError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"Created job [bold]{job.id}[/bold] for connector {connector_id}")


@app.command("cancel")
def cancel(
    job_id: str = typer.Argument(..., help="Sync job to cancel"),
    db: str | None = DB_OPTION,
) -> None:
    """Cancel a pending job or ask a running one to stop."""
    service = make_service(db)
    try:
        status = service.actions.request_cancel(job_id)
    except SyncError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"Job {job_id} is now [bold]{status.value}[/bold]")


@app.command("cleanup")
def cleanup(db: str | None = DB_OPTION) -> None:
    """Delete orphaned jobs and fail stuck ones."""
    service = make_service(db)
    result = service.cleanup.execute()
    console.print(f"Deleted {result.orphaned} orphaned job(s), marked {result.stuck} stuck job(s) as error")


@app.command("connectors")
def connectors(db: str | None = DB_OPTION) -> None:
    """List connectors and their last sync."""
    service = make_service(db)
    rows = service.actions.list_connectors()
    if not rows:
        console.print("[yellow]No connectors[/yellow]")
        return

    table = Table(title="Connectors")
    table.add_column("ID", style="cyan")
    table.add_column("Service type")
    table.add_column("Index")
    table.add_column("Status")
    table.add_column("Schedule")
    table.add_column("Last sync")
    table.add_column("Last synced")
    for settings in rows:
        schedule = settings.scheduling.interval if settings.scheduling.enabled else "disabled"
        table.add_row(
            settings.id,
            settings.service_type,
            settings.index_name,
            settings.status.value,
            schedule,
            settings.last_sync_status.value if settings.last_sync_status else "-",
            format_timestamp(settings.last_synced),
        )
    console.print(table)


@app.command("create-connector")
def create_connector(
    service_type: str = typer.Option(..., "--service-type", "-s", help="Registered service type"),
    index_name: str = typer.Option(..., "--index-name", "-i", help="Target content index"),
    interval: str | None = typer.Option(
        None, "--interval", help="Cron schedule (Quartz or crontab); enables scheduling"
    ),
    db: str | None = DB_OPTION,
) -> None:
    """Create a connector record (configured on the next scheduler tick)."""
    service = make_service(db)
    if not service.registry.has(service_type):
        err_console.print(
            f"[red]Unknown service type '{service_type}'. "
            f"Available: {', '.join(service.registry.service_types())}[/red]"
        )
        raise typer.Exit(code=1)
    scheduling = SchedulingSettings(enabled=bool(interval), interval=interval or "")
    settings = service.actions.create_connector(service_type, index_name, scheduling=scheduling)
    console.print(f"Created connector [bold]{settings.id}[/bold]")
