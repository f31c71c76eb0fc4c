"""
CLI: ``cronspine jobs``: job definitions and their history.
"""

from __future__ import annotations

import typer

from cronspine.cli.utils import console, err_console, make_engine, output_json, output_table
from cronspine.core.errors import CronSpineError
from cronspine.core.models import JobSpec

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_jobs(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List every job with its schedule."""
    engine = make_engine(database)
    try:
        views = [view.to_dict() for view in engine.list_triggers()]
    finally:
        engine.close()

    if json_out:
        output_json(views)
        return
    output_table(
        "Jobs",
        ["Group", "Name", "Cron", "Last", "Next", "State"],
        [
            [
                v["jobGroup"],
                v["jobName"],
                v["cronExpression"],
                v["lastExecutionTime"],
                v["nextExecutionTime"],
                v["state"],
            ]
            for v in views
        ],
    )


@app.command("groups")
def list_groups(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List job group names."""
    engine = make_engine(database)
    try:
        groups = sorted(engine.list_job_groups())
    finally:
        engine.close()

    if json_out:
        output_json(groups)
        return
    for group in groups:
        console.print(group)


@app.command("add")
def add_job(
    group: str = typer.Argument(..., help="Job group"),
    name: str = typer.Argument(..., help="Job name"),
    cron: str = typer.Option(..., "--cron", "-c", help="Cron expression, e.g. '0 */5 * * * ?'"),
    url: str = typer.Option(..., "--url", help="URL to call"),
    method: str = typer.Option("GET", "--method", "-m"),
    body: str | None = typer.Option(None, "--body"),
    header: list[str] = typer.Option([], "--header", "-H", help="Name: value (repeatable)"),
    description: str = typer.Option("", "--description"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Create or replace an HTTP job."""
    job_data = {"url": url, "method": method}
    if body is not None:
        job_data["body"] = body
    for item in header:
        key, sep, value = item.partition(":")
        if not sep:
            err_console.print(f"[red]Invalid header {item!r}; expected 'Name: value'[/red]")
            raise typer.Exit(code=2)
        job_data[f"header.{key.strip()}"] = value.strip()

    engine = make_engine(database)
    try:
        trigger = engine.upsert_job(
            JobSpec(
                job_name=name,
                job_group=group,
                cron_expression=cron,
                description=description,
                job_data=job_data,
            )
        )
    except CronSpineError as e:
        err_console.print(f"[red]Error scheduling job: {e.message}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        engine.close()

    console.print(
        f"[green]Job scheduled successfully[/green] {group}.{name} "
        f"({trigger.state.value}, next: {trigger.next_fire_time or 'Completed'})"
    )


@app.command("delete")
def delete_job(
    group: str = typer.Argument(..., help="Job group"),
    name: str = typer.Argument(..., help="Job name"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Delete a job and its trigger (no-op if it does not exist)."""
    engine = make_engine(database)
    try:
        existed = engine.delete_job(group, name)
    finally:
        engine.close()
    suffix = "" if existed else " (nothing to delete)"
    console.print(f"Job deleted successfully{suffix}")


@app.command("history")
def job_history(
    group: str = typer.Argument(..., help="Job group"),
    name: str = typer.Argument(..., help="Job name"),
    limit: int = typer.Option(20, "--limit", "-n"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the most recent executions of a job."""
    engine = make_engine(database)
    try:
        entries = [entry.to_dict() for entry in engine.history(group, name, limit)]
    finally:
        engine.close()

    if json_out:
        output_json(entries)
        return
    output_table(
        f"History {group}.{name}",
        ["Fire time", "Duration (ms)", "Status", "Message"],
        [[e["fireTime"], e["durationMs"], e["status"], e["message"]] for e in entries],
    )
