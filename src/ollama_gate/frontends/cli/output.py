"""Output formatting utilities for CLI commands."""

from __future__ import annotations

import json
import sys
from datetime import datetime
from typing import Any, NoReturn

import rich_click as click
from rich.console import Console
from rich.table import Table


def output_json(data: Any, indent: int = 2) -> None:
    """Output data as formatted JSON."""
    click.echo(json.dumps(data, indent=indent))


def error_exit(message: str, code: int = 1) -> NoReturn:
    """Print error message and exit with code."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def _format_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def progress_table(data: dict[str, Any]) -> Table:
    """Build a two-column table from an /api/progress body."""
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("field", style="bold")
    table.add_column("value")

    table.add_row("Model", str(data.get("model_name", "")))
    table.add_row("Status", str(data.get("status", "")))
    if data.get("detail"):
        table.add_row("Detail", str(data["detail"]))

    total = int(data.get("total") or 0)
    if total > 0:
        completed = int(data.get("completed") or 0)
        table.add_row(
            "Progress",
            f"{float(data.get('progress') or 0):.1f}% "
            f"({_format_bytes(completed)} / {_format_bytes(total)})",
        )

    if data.get("completed_at"):
        completed_at = datetime.fromtimestamp(int(data["completed_at"]))
        table.add_row("Completed at", completed_at.strftime("%Y-%m-%d %H:%M:%S"))
    if data.get("duration") is not None:
        table.add_row("Duration", f"{data['duration']}s")
    if data.get("app_url"):
        table.add_row("App URL", str(data["app_url"]))
    return table


def print_progress(data: dict[str, Any], console: Console | None = None) -> None:
    (console or Console()).print(progress_table(data))
