"""CLI formatters — status indicators and table building."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text


def get_console(no_color: bool = False) -> Console:
    return Console(no_color=no_color)


def status_indicator(status: str) -> Text:
    """Map a request or agent status to a colored marker."""
    mapping = {
        "running": Text("> ", style="green"),
        "complete": Text("✓ ", style="green"),
        "pending": Text("… ", style="dim"),
        "timeout": Text("! ", style="yellow"),
        "error": Text("x ", style="red"),
        "exited": Text("x ", style="red"),
        "broken": Text("! ", style="red"),
        "not-found": Text("? ", style="dim"),
    }
    return mapping.get(status, Text("? ", style="dim"))


def preview(text: str | None, limit: int = 200) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table
