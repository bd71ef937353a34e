"""storyweaver cache commands — inspect and clear cached audio."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from storyweaver.audio.cache import cache_info, clear_audio_cache
from storyweaver.core.config import load_config
from storyweaver.storage.store import JsonFileStore

console = Console()

cache_app = typer.Typer(help="Inspect or clear cached narration audio.", no_args_is_help=True)


def _format_size(chars: int) -> str:
    size = float(chars)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


@cache_app.command("info")
def info(
    keys: Annotated[bool, typer.Option("--keys", help="List every cached audio key.")] = False,
) -> None:
    """Show how much audio is cached."""
    config = load_config()
    store = JsonFileStore(config.store_path)
    summary = cache_info(store)

    console.print(f"[bold]Cache:[/bold] {config.store_path}")
    console.print(f"  Audio entries: {summary['count']}")
    console.print(f"  Estimated size: {_format_size(summary['estimated_size'])}")
    if keys:
        for key in summary["keys"]:
            console.print(f"  [dim]{key}[/dim]")


@cache_app.command("clear")
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
) -> None:
    """Delete all cached audio and alignment entries."""
    config = load_config()
    store = JsonFileStore(config.store_path)
    count = cache_info(store)["count"]
    if count == 0:
        console.print("[dim]Cache is already empty.[/dim]")
        return

    if not yes and not typer.confirm(f"Delete {count} cached audio entries?"):
        raise typer.Abort()

    removed = clear_audio_cache(store)
    console.print(f"[green]Cleared {removed} cached audio entries.[/green]")
