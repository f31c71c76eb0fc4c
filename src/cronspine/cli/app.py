"""
Root Typer application for the cronspine CLI.
"""

from __future__ import annotations

import sys
from datetime import datetime

import typer

from cronspine import __version__
from cronspine.cli.jobs import app as jobs_app
from cronspine.cli.utils import console, err_console, load_settings, make_engine
from cronspine.core.errors import SchedulingError
from cronspine.core.logging import configure_logging
from cronspine.core.timestamps import DISPLAY_FORMAT, resolve_timezone, utc_now

app = typer.Typer(
    name="cronspine",
    help="cronspine: cron-driven HTTP job scheduler with execution history.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
cron_app = typer.Typer(no_args_is_help=True)

app.add_typer(jobs_app, name="jobs", help="Job definitions and history.")
app.add_typer(cron_app, name="cron", help="Cron expression tools.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cron-spine {__version__}")
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
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level for commands (stderr)."),
) -> None:
    """cronspine CLI: serve the scheduler, manage jobs, inspect history."""
    configure_logging(level=log_level, json_format=False, stream=sys.stderr)


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    database: str | None = typer.Option(None, "--database", "-d"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Start the scheduler and its REST API."""
    import uvicorn

    from cronspine.api import create_app

    settings = load_settings(database)
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level.upper()})
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting cron-spine[/bold green] on {host}:{port}")
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


@app.command("purge")
def purge(
    database: str | None = typer.Option(None, "--database", "-d"),
    days: int | None = typer.Option(None, "--days", help="Override retention days"),
) -> None:
    """Run one retention pass over the execution history."""
    engine = make_engine(database)
    try:
        if days is not None:
            engine.cleaner.retention_days = days
        result = engine.purge()
    finally:
        engine.close()

    if result is None:
        err_console.print("[red]Purge failed; see logs[/red]")
        raise typer.Exit(code=1)
    if result.skipped:
        console.print("[yellow]Retention disabled (days <= 0); nothing deleted[/yellow]")
        return
    console.print(f"Deleted {result.deleted} execution log(s) older than {result.cutoff}")


@cron_app.command("next")
def cron_next(
    expression: str = typer.Argument(..., help="Cron expression, e.g. '0 */5 * * * ?'"),
    count: int = typer.Option(5, "--count", "-n", min=1),
    timezone: str | None = typer.Option(None, "--tz", help="IANA zone (default: system zone)"),
    after: datetime | None = typer.Option(None, "--after", help="Reference instant (default: now)"),
) -> None:
    """Print the next fire instants of a cron expression."""
    from cronspine.core.cron import CronExpression

    tz = resolve_timezone(timezone)
    try:
        cron = CronExpression(expression, tz)
    except SchedulingError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e

    instant = after.replace(tzinfo=after.tzinfo or tz) if after else utc_now()
    for _ in range(count):
        instant = cron.next_fire_after(instant)
        if instant is None:
            console.print("[dim]Completed (no further fire times)[/dim]")
            break
        console.print(instant.astimezone(tz).strftime(DISPLAY_FORMAT))


if __name__ == "__main__":
    app()
