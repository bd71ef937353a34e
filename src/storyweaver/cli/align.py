"""storyweaver align command — show word timing for an alignment file."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from storyweaver.text.alignment import to_word_timestamps, total_duration_ms
from storyweaver.text.segmenter import MAX_CJK_SEGMENT, WordSegmenter

console = Console()


def align(
    alignment: Annotated[
        Path,
        typer.Argument(help="Alignment JSON (provider response, character or word alignment)."),
    ],
    max_cjk_segment: Annotated[
        int,
        typer.Option("--max-cjk-segment", min=1, help="Longest segment for unspaced scripts."),
    ] = MAX_CJK_SEGMENT,
) -> None:
    """Convert an alignment file to word timestamps and print them."""
    try:
        payload = json.loads(alignment.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read alignment:[/red] {e}")
        raise typer.Exit(1)

    timestamps = to_word_timestamps(payload, WordSegmenter(max_cjk_segment))
    if not timestamps:
        console.print(
            "[yellow]No word timing:[/yellow] alignment is missing, malformed, "
            "or its arrays differ in length."
        )
        raise typer.Exit(1)

    table = Table(title=f"Word Timing ({len(timestamps)} words)")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Word", style="bold")
    table.add_column("Start (ms)", justify="right")
    table.add_column("End (ms)", justify="right")

    for i, ts in enumerate(timestamps):
        table.add_row(str(i), ts.word, str(ts.start_ms), str(ts.end_ms))

    console.print(table)
    console.print(f"[dim]Duration: {total_duration_ms(timestamps) / 1000:.2f}s[/dim]")
