"""CLI formatters: console, mood styling, table formatting."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def state_text(state: str) -> Text:
    """Map a mood band label to a colored Text."""
    styles = {
        "VERY_GOOD": "bold green",
        "GOOD": "green",
        "BAD": "yellow",
        "VERY_BAD": "bold red",
    }
    return Text(state, style=styles.get(state, "dim"))


def boost_text(boost: int) -> Text:
    if boost > 0:
        return Text(f"+{boost}", style="green")
    if boost < 0:
        return Text(str(boost), style="red")
    return Text("0", style="dim")


def format_duration(seconds: float) -> str:
    """Compact age string: 45s, 2m05s, 3h 07m, 1d 04h."""
    total = int(max(0.0, seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}d {hours:02d}h"
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table
