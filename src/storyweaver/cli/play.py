"""storyweaver play command — interactive terminal player."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.text import Text

from storyweaver.audio.cache import AudioCacheLookup, AudioCacheRecorder
from storyweaver.audio.provider import ElevenLabsProvider
from storyweaver.audio.sink import AudioSink, SilentAudioSink
from storyweaver.core.config import API_KEY_ENV_VAR, SWConfig, load_config, resolve_api_key
from storyweaver.core.errors import StoryFormatError
from storyweaver.core.events import PlaybackEvent
from storyweaver.core.languages import language_name, validate_language
from storyweaver.core.models import Story
from storyweaver.playback.controller import Phase, PlaybackController
from storyweaver.storage.store import DirectoryBlobStore, JsonFileStore
from storyweaver.story.loader import load_story

console = Console()

HELP_LINE = "[dim]Enter: next  s: skip  r: replay  1-9: choose  q: quit[/dim]"


def word_spans(text: str, words: list[str]) -> list[tuple[int, int]]:
    """Locate each word in ``text``, in order. Missing words get (-1, -1)."""
    spans = []
    cursor = 0
    for word in words:
        start = text.find(word, cursor) if word else -1
        if start < 0:
            spans.append((-1, -1))
            continue
        spans.append((start, start + len(word)))
        cursor = start + len(word)
    return spans


def render_line(speaker: str, text: str, words: list[str], index: int) -> Text:
    """The active line with the current word highlighted."""
    rendered = Text()
    if speaker:
        rendered.append(f"{speaker}: ", style="bold cyan")
    body = Text(text)
    if 0 <= index < len(words):
        start, end = word_spans(text, words)[index]
        if start >= 0:
            body.stylize("bold black on yellow", start, end)
    rendered.append_text(body)
    return rendered


class TerminalRenderer:
    """EventCallback that paints playback events into a rich Live region."""

    def __init__(self, live: Live) -> None:
        self.live = live
        self.controller: PlaybackController | None = None
        self._scene_id: str | None = None
        self._speaker = ""
        self._text = ""

    def __call__(self, event: PlaybackEvent) -> None:
        data = event.data or {}
        if event.kind == "line":
            self._announce_scene()
            self._speaker = data.get("speaker") or ""
            self._text = event.message
            self._refresh(-1)
        elif event.kind == "highlight":
            self._refresh(data.get("index", -1))
        elif event.kind == "error":
            self.live.console.print(f"[yellow]Audio:[/yellow] {event.message}")
        elif event.kind == "media" and data:
            self.live.console.print(f"[dim]{data['kind'].title()}: {data['url']}[/dim]")
        elif event.kind == "choices":
            self.live.console.print("[bold]Choose:[/bold]")
            for i, choice in enumerate(data.get("choices", []), 1):
                self.live.console.print(f"  [bold]{i}[/bold]. {choice['label'] or choice['id']}")
        elif event.kind == "ended":
            self.live.console.print(f"[green]{event.message}[/green]")

    def _announce_scene(self) -> None:
        controller = self.controller
        if controller is None or controller.scene is None:
            return
        if controller.scene.id != self._scene_id:
            self._scene_id = controller.scene.id
            self.live.console.print(f"\n[bold]== {controller.scene.title or controller.scene.id} ==[/bold]")

    def _refresh(self, index: int) -> None:
        scheduler = self.controller.scheduler if self.controller else None
        words = scheduler.words if scheduler else self._text.split()
        self.live.update(render_line(self._speaker, self._text, words, index), refresh=True)


def _make_sink(backend: str, mute: bool) -> AudioSink:
    if mute or backend == "silent":
        return SilentAudioSink()

    from storyweaver.player.mpv_player import MpvAudioSink

    try:
        return MpvAudioSink()
    except (ImportError, FileNotFoundError) as e:
        console.print(f"[yellow]{e}[/yellow]\n[dim]Continuing without sound.[/dim]")
        return SilentAudioSink()


async def _session(controller: PlaybackController) -> None:
    """Read commands until the story ends or the user quits."""
    pending: set[asyncio.Task] = set()

    def spawn(coro) -> None:
        task = asyncio.create_task(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    def position() -> tuple:
        return controller.state.scene_id, controller.state.beat_index, controller.state.line_index

    def start_line(with_media: bool) -> None:
        if controller.state.phase != Phase.LINE_ACTIVE:
            return
        spawn(controller.play_current_line())
        if with_media:
            spawn(controller.load_media())

    start_line(with_media=True)
    while controller.state.phase != Phase.SCENE_ENDED:
        try:
            command = (await asyncio.to_thread(input)).strip().lower()
        except EOFError:
            break
        if command == "q":
            break

        before = position()
        if command == "":
            # Enter on a playing clip moves on at once
            if controller.state.locked:
                controller.skip()
            else:
                controller.advance()
        elif command == "s":
            controller.skip()
        elif command == "r":
            if not controller.state.locked:
                spawn(controller.play_current_line())
            continue
        elif command.isdigit() and controller.state.phase == Phase.CHOICES_SHOWN:
            choices = controller.state.choices
            n = int(command)
            if not 1 <= n <= len(choices):
                console.print(f"[yellow]Pick a choice between 1 and {len(choices)}.[/yellow]")
                continue
            controller.choose(choices[n - 1].id)
        else:
            console.print(HELP_LINE)
            continue

        after = position()
        if after != before:
            start_line(with_media=after[:2] != before[:2])

    controller.close()
    for task in list(pending):
        task.cancel()


async def _run_player(
    story: Story,
    config: SWConfig,
    language: str,
    scene_id: str | None,
    mute: bool,
    use_cache: bool,
) -> None:
    sink = _make_sink(config.player.audio_backend, mute)
    store = JsonFileStore(config.store_path) if use_cache else None

    with Live(Text(""), console=console, auto_refresh=False) as live:
        renderer = TerminalRenderer(live)
        controller = PlaybackController(
            story,
            ElevenLabsProvider(config.tts),
            sink,
            api_key=resolve_api_key(config.tts),
            language=language,
            cache=AudioCacheLookup(store) if store is not None else None,
            recorder=AudioCacheRecorder(store) if store is not None else None,
            blobs=DirectoryBlobStore(config.media_dir),
            player_config=config.player,
            fallback_voice=config.tts.fallback_voice_id,
            on_event=renderer,
        )
        renderer.controller = controller
        controller.open(scene_id)
        await _session(controller)

    terminate = getattr(sink, "terminate", None)
    if terminate is not None:
        terminate()


def play(
    story_path: Annotated[
        Path,
        typer.Argument(help="Story JSON file (editor export or backup story.json)."),
    ],
    scene: Annotated[
        Optional[str],
        typer.Option("--scene", help="Scene id to start from (default: the story's start scene)."),
    ] = None,
    language: Annotated[
        Optional[str],
        typer.Option("--language", "-l", help="Story language code (default from config)."),
    ] = None,
    mute: Annotated[
        bool,
        typer.Option("--mute", help="Play without sound; highlighting follows the clip timing."),
    ] = False,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Always generate fresh audio and do not record it."),
    ] = False,
) -> None:
    """Play a story in the terminal with narrated, word-highlighted lines."""
    config = load_config(**{"player.language": language})

    try:
        lang = validate_language(config.player.language)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not story_path.is_file():
        console.print(f"[red]File not found:[/red] {story_path}")
        raise typer.Exit(1)
    try:
        story = load_story(story_path)
    except StoryFormatError as e:
        console.print(f"[red]Invalid story:[/red] {e}")
        raise typer.Exit(1)

    if scene is not None and story.scene(scene) is None:
        console.print(f"[red]No scene with id:[/red] {scene}")
        raise typer.Exit(1)

    console.print(f"[bold]Playing:[/bold] {story_path.name} ({language_name(lang).title()})")
    if not resolve_api_key(config.tts):
        console.print(
            f"[yellow]No API key ({API_KEY_ENV_VAR}).[/yellow] [dim]Only cached audio will play.[/dim]"
        )
    console.print(HELP_LINE)

    asyncio.run(
        _run_player(
            story,
            config,
            lang,
            scene,
            mute,
            use_cache=config.player.use_cache and not no_cache,
        )
    )
