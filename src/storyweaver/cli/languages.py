"""storyweaver languages command — list supported story languages."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from storyweaver.core.languages import STORY_LANGUAGES

console = Console()


def languages() -> None:
    """List the languages a story can be played in."""
    table = Table(title=f"Supported Languages ({len(STORY_LANGUAGES)})")
    table.add_column("Code", style="bold cyan", width=5)
    table.add_column("Language", width=20)

    for code, name in STORY_LANGUAGES.items():
        table.add_row(code, name.title())

    console.print(table)
    console.print(
        "\n[dim]The language picks the per-language narrator voice "
        "and keeps cached audio separate per language.[/dim]"
    )
