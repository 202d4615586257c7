"""Rich output helpers."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

console = Console()


def _flag(value: bool, style: str = "green") -> Text:
    return Text("✓", style=style) if value else Text("—", style="dim")


def providers_table(items: list[dict[str, Any]]) -> Table:
    table = Table(
        title=f"Identity provider clients ({len(items)})",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("Type", style="bold")
    table.add_column("Display name")
    table.add_column("Category")
    table.add_column("Category default", justify="center")
    table.add_column("Proxied", justify="center")
    table.add_column("Trim username", justify="center")
    table.add_column("Client", style="dim")

    for p in items:
        table.add_row(
            p["type"],
            p["display_name"],
            p["category"],
            _flag(p["category_default"]),
            _flag(p["proxied"], style="yellow"),
            _flag(p["trim_username"]),
            p["client"],
        )
    return table


def captcha_status_text(organization: str, username: str, enabled: bool) -> Text:
    if enabled:
        return Text(
            f"{organization}/{username}: captcha required (failed sign-in limit reached)",
            style="yellow",
        )
    return Text(f"{organization}/{username}: no captcha required", style="green")
