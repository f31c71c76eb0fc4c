"""
CLI utility helpers: output formatting and engine construction.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from cronspine.core.settings import CronSpineSettings, get_settings
from cronspine.scheduling.engine import SchedulerEngine, create_scheduler

console = Console()
err_console = Console(stderr=True)


def load_settings(database: str | None = None) -> CronSpineSettings:
    """Cached settings, with ``--database`` applied on top."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_path": database})
    return settings


def make_engine(database: str | None = None) -> SchedulerEngine:
    """Build an engine for a one-shot command (not started: nothing ticks)."""
    return create_scheduler(load_settings(database))


def output_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def output_table(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    """Render rows as a rich table; prints a dim notice when empty."""
    if not rows:
        console.print(f"[dim]No {title.lower()} found.[/dim]")
        return
    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*("" if value is None else str(value) for value in row))
    console.print(table)
