"""storyweaver voices command — list voices available to the API key."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from storyweaver.audio.provider import ElevenLabsProvider
from storyweaver.core.config import API_KEY_ENV_VAR, load_config, resolve_api_key
from storyweaver.core.errors import StoryWeaverError

console = Console()


def voices() -> None:
    """List ElevenLabs voices for assigning to characters."""
    config = load_config()
    api_key = resolve_api_key(config.tts)
    if not api_key:
        console.print(f"[red]No API key.[/red] Set {API_KEY_ENV_VAR} or tts.api_key.")
        raise typer.Exit(1)

    try:
        available = asyncio.run(ElevenLabsProvider(config.tts).list_voices(api_key))
    except StoryWeaverError as e:
        console.print(f"[red]Could not list voices:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Voices ({len(available)})")
    table.add_column("Voice ID", style="bold cyan")
    table.add_column("Name")
    table.add_column("Category", style="dim")

    for voice in available:
        table.add_row(
            str(voice.get("voice_id", "")),
            str(voice.get("name", "")),
            str(voice.get("category") or "-"),
        )
    console.print(table)
