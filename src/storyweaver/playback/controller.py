"""Playback state machine: scenes, beats, lines and their audio.

The controller owns the current scene/beat/line pointers and drives one
audio session at a time:

    IDLE -> LINE_ACTIVE -> (CACHE_HIT | GENERATING) -> PLAYING -> ENDED
         -> LINE_ACTIVE (next) | CHOICES_SHOWN | SCENE_ENDED

Single flight: ``play_current_line`` takes the lock before its first await
and holds it until the clip ends, fails or is cancelled. Requests arriving
while it is held are dropped, not queued; the renderer re-triggers
explicitly. Every cancellation (beat change, scene change, choice, skip,
close) bumps an epoch counter; async results tagged with an older epoch are
discarded.

Failures while fetching or starting a clip never propagate out of the
controller. They become ``state.audio_error`` plus an ``error`` event, and
the lock is released. Advancement is manual, except after a playback (media) error,
where the controller moves to the next line on its own.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from storyweaver.audio.cache import AudioCacheLookup, AudioCacheRecorder
from storyweaver.audio.provider import SpeechProvider
from storyweaver.audio.sink import AudioSink
from storyweaver.core.config import DEFAULT_VOICE_ID, PlayerConfig
from storyweaver.core.errors import ConfigurationError, ProviderError
from storyweaver.core.events import EventCallback, PlaybackEvent
from storyweaver.core.models import (
    AlignmentRaw,
    Beat,
    Connection,
    Line,
    MediaRef,
    Scene,
    Story,
    WordTimestamp,
)
from storyweaver.playback.highlight import HighlightFrame, HighlightScheduler
from storyweaver.story.media import resolve_media
from storyweaver.story.parser import NarratorChain, build_voice_map, parse_beat, parse_scene
from storyweaver.storage.store import BlobStore
from storyweaver.text.alignment import to_word_timestamps, total_duration_ms
from storyweaver.utils.console import console


class Phase(str, Enum):
    IDLE = "idle"
    LINE_ACTIVE = "line_active"
    GENERATING = "generating"
    CACHE_HIT = "cache_hit"
    PLAYING = "playing"
    ENDED = "ended"
    CHOICES_SHOWN = "choices_shown"
    SCENE_ENDED = "scene_ended"


@dataclass
class PlaybackState:
    """Everything the renderer needs; reset on scene change and close."""

    phase: Phase = Phase.IDLE
    scene_id: str | None = None
    beat_index: int = 0
    line_index: int = 0
    lines: list[Line] = field(default_factory=list)
    audio_source_kind: str | None = None  # "cache" or "fresh"
    locked: bool = False
    audio_error: str | None = None
    choices: list[Connection] = field(default_factory=list)
    media: MediaRef | None = None
    timestamps: list[WordTimestamp] = field(default_factory=list)
    word_index: int = -1


class PlaybackController:
    """Drive playback of a story.

    Args:
        story: The story graph (read-only).
        provider: Generates speech on cache misses.
        sink: Audio output; its end/error signals are wired to this
            controller.
        api_key: Speech provider key. Only needed for cache misses.
        language: Story language code; selects the narrator voice and is
            part of the cache key.
        cache: Cache lookup ladder, or None to always generate.
        recorder: Records freshly generated clips, or None.
        blobs: Media store for scene/beat images and videos.
        player_config: Highlight timing settings.
        fallback_voice: Voice for lines no other rule resolves.
        on_event: Renderer callback.
    """

    def __init__(
        self,
        story: Story,
        provider: SpeechProvider,
        sink: AudioSink,
        api_key: str | None = None,
        language: str = "en",
        cache: AudioCacheLookup | None = None,
        recorder: AudioCacheRecorder | None = None,
        blobs: BlobStore | None = None,
        player_config: PlayerConfig | None = None,
        fallback_voice: str | None = DEFAULT_VOICE_ID,
        on_event: EventCallback | None = None,
    ) -> None:
        self.story = story
        self.provider = provider
        self.sink = sink
        self.api_key = api_key
        self.language = language
        self.cache = cache
        self.recorder = recorder
        self.blobs = blobs
        self.player_config = player_config or PlayerConfig()
        self.fallback_voice = fallback_voice
        self.on_event = on_event

        self.state = PlaybackState()
        self._epoch = 0
        self._scene: Scene | None = None
        self._beats: list[Beat] = []
        self._voice_map: dict[str, str] = {}
        self._narrator = NarratorChain(language=language)
        self._scheduler: HighlightScheduler | None = None
        self._highlight_task: asyncio.Task | None = None
        self._session_active = False

        sink.on_ended = self.on_audio_ended
        sink.on_error = self.on_audio_error

    # -- events -----------------------------------------------------------

    def _emit(self, kind: str, message: str = "", data: dict | None = None) -> None:
        if self.on_event:
            self.on_event(PlaybackEvent(kind=kind, message=message, data=data))

    def _set_phase(self, phase: Phase) -> None:
        self.state.phase = phase
        self._emit("state", phase.value)

    # -- accessors --------------------------------------------------------

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def scene(self) -> Scene | None:
        return self._scene

    @property
    def in_beat_mode(self) -> bool:
        return bool(self._beats)

    @property
    def current_beat(self) -> Beat | None:
        if 0 <= self.state.beat_index < len(self._beats):
            return self._beats[self.state.beat_index]
        return None

    @property
    def current_line(self) -> Line | None:
        if 0 <= self.state.line_index < len(self.state.lines):
            return self.state.lines[self.state.line_index]
        return None

    @property
    def scheduler(self) -> HighlightScheduler | None:
        return self._scheduler

    # -- lifecycle --------------------------------------------------------

    def open(self, scene_id: str | None = None) -> None:
        """Start a playback session.

        Voice assignments are snapshotted here; later edits to the story's
        assignments do not affect this session.
        """
        self._cancel_audio()
        self.state = PlaybackState()
        self._voice_map = build_voice_map(self.story.voice_assignments)
        self._narrator = NarratorChain(
            global_voice=self.story.narrator_voice_id,
            by_language=dict(self.story.narrator_voices),
            language=self.language,
        )
        self.load_scene(scene_id or self.story.first_scene_id)

    def close(self) -> None:
        self._cancel_audio()
        self.state = PlaybackState()
        self._scene = None
        self._beats = []
        self._set_phase(Phase.IDLE)

    def load_scene(self, scene_id: str | None) -> None:
        """Enter a scene; a missing scene ends the path."""
        self._cancel_audio()
        scene = self.story.scene(scene_id)
        self.state = PlaybackState(scene_id=scene_id)
        self._scene = scene
        if scene is None:
            self._beats = []
            self._set_phase(Phase.SCENE_ENDED)
            self._emit("ended", "End of path.")
            return

        self._beats = scene.sorted_beats() if scene.in_beat_mode else []
        self._load_lines()

    def _load_lines(self) -> None:
        beat = self.current_beat
        if beat is not None:
            lines = parse_beat(beat, self._voice_map, self._narrator, self.fallback_voice)
        else:
            lines = parse_scene(self._scene, self._voice_map, self._narrator, self.fallback_voice)
        self.state.lines = lines
        self.state.line_index = 0
        self.state.audio_error = None
        self.state.media = None
        self._enter_line()

    def _enter_line(self) -> None:
        # Highlighting belongs to the line it was started for
        self._stop_highlight()
        self.state.timestamps = []
        self.state.word_index = -1
        self._set_phase(Phase.LINE_ACTIVE)
        line = self.current_line
        self._emit(
            "line",
            line.text if line else "",
            {
                "line_id": line.id if line else None,
                "speaker": line.speaker if line else None,
                "beat_index": self.state.beat_index,
                "line_index": self.state.line_index,
            },
        )

    # -- audio session ----------------------------------------------------

    def _cache_beat(self) -> tuple[str, int]:
        """Beat id and position used for cache keys.

        Outside beat mode each line stands in for a beat.
        """
        beat = self.current_beat
        if beat is not None:
            return beat.id, self.state.beat_index
        return f"line{self.state.line_index}", self.state.line_index

    def _release(self) -> None:
        self.state.locked = False

    def _stop_highlight(self) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
        if self._highlight_task is not None and not self._highlight_task.done():
            self._highlight_task.cancel()
        self._highlight_task = None

    def _cancel_audio(self) -> None:
        """Tear down any session and invalidate in-flight results."""
        self._epoch += 1
        self._stop_highlight()
        self._scheduler = None
        self._session_active = False
        self.sink.stop()
        self.state.audio_source_kind = None
        self._release()

    async def play_current_line(self) -> bool:
        """Obtain and play audio for the active line.

        Returns True when playback started. Returns False when the line is
        not spoken, the lock is held, a recoverable error occurred, or the
        result went stale while awaiting.
        """
        line = self.current_line
        if line is None or not line.is_spoken:
            return False
        if self.state.locked:
            console.print("[dim]Audio session already in progress, request dropped.[/dim]")
            return False

        # Taken before the first await so overlapping requests see it
        self.state.locked = True
        epoch = self._epoch
        scene_id = self.state.scene_id
        beat_id, beat_index = self._cache_beat()

        try:
            self.state.audio_error = None

            # Store access stays on the loop thread
            cached = None
            if self.cache is not None:
                cached = self.cache.find(
                    scene_id,
                    beat_id,
                    line.speaker,
                    self.language,
                    beat_index,
                    line.text,
                )

            if cached is not None:
                self._set_phase(Phase.CACHE_HIT)
                audio, alignment, kind = cached.audio, cached.alignment, "cache"
            else:
                if not self.api_key:
                    raise ConfigurationError("ElevenLabs API key is not set.")
                self._set_phase(Phase.GENERATING)
                try:
                    result = await self.provider.generate(line.text, line.voice_id, self.api_key)
                except ProviderError as e:
                    raise ProviderError(f"Speech generation failed: {e}", e.status_code) from e
                if self._discard_if_stale(epoch, line):
                    return False
                audio, alignment, kind = result.audio, result.alignment, "fresh"
                if self.recorder is not None:
                    self._record(scene_id, beat_id, line, audio, alignment)

            self._start_playback(line, audio, alignment, kind, epoch)
        except (ConfigurationError, ProviderError) as e:
            if epoch != self._epoch:
                return False
            self._fail(str(e))
            return False
        except Exception as e:
            if epoch != self._epoch:
                console.print(f"[dim]Ignored failure from a cancelled audio session: {e}[/dim]")
                return False
            self._cancel_audio()
            self._fail(f"Audio playback failed: {e}")
            return False

        return self.state.phase == Phase.PLAYING

    def _discard_if_stale(self, epoch: int, line: Line) -> bool:
        if epoch != self._epoch:
            # Whoever bumped the epoch already released the lock
            console.print("[dim]Discarded stale audio result.[/dim]")
            return True
        if self.current_line is not line:
            console.print("[dim]Line changed while audio was loading, result discarded.[/dim]")
            self._release()
            return True
        return False

    def _record(
        self,
        scene_id: str | None,
        beat_id: str,
        line: Line,
        audio: bytes,
        alignment: AlignmentRaw | None,
    ) -> None:
        try:
            key = self.recorder.record(
                scene_id or "",
                beat_id,
                self.language,
                line.speaker,
                audio,
                alignment,
            )
        except OSError as e:
            console.print(f"[yellow]Could not cache audio:[/yellow] {e}")
            return
        console.print(f"[dim]Cached audio: {key}[/dim]")

    def _fail(self, message: str) -> None:
        console.print(f"[yellow]{message}[/yellow]")
        self.state.audio_error = message
        self._release()
        self._set_phase(Phase.LINE_ACTIVE)
        self._emit("error", message)

    def _start_playback(
        self,
        line: Line,
        audio: bytes,
        alignment: AlignmentRaw | None,
        kind: str,
        epoch: int,
    ) -> None:
        # Malformed alignment degrades to interpolated highlighting
        timestamps = to_word_timestamps(alignment)
        hint = total_duration_ms(timestamps) / 1000 or None

        self.state.timestamps = timestamps
        self.state.audio_source_kind = kind
        self.state.word_index = -1
        self._set_phase(Phase.PLAYING)
        self._session_active = True

        self.sink.load(audio, duration_hint=hint)
        self.sink.play()
        if epoch != self._epoch or not self._session_active:
            # The sink failed synchronously and the error path already ran
            return

        self._scheduler = HighlightScheduler(
            line.text,
            timestamps,
            duration=lambda: self.sink.duration or hint,
            position=lambda: self.sink.position,
            config=self.player_config,
        )
        self._highlight_task = asyncio.create_task(self._scheduler.run(self._on_frame))

    def _on_frame(self, frame: HighlightFrame) -> None:
        self.state.word_index = frame.index
        self._emit("highlight", data={"index": frame.index, "time": frame.time, "done": frame.done})

    def on_audio_ended(self) -> None:
        """Audio finished: release the lock and wait for the user."""
        if not self._session_active:
            return
        self._session_active = False
        self._stop_highlight()
        self._release()
        if self.state.phase == Phase.PLAYING:
            self._set_phase(Phase.ENDED)

    def on_audio_error(self, message: str) -> None:
        """Audio backend failure: report it and, if its line is still on
        screen, move to the next line."""
        if not self._session_active:
            return
        console.print(f"[yellow]{message}[/yellow]")
        self.state.audio_error = self.state.audio_error or message
        self._emit("error", message)
        still_on_line = self.state.phase == Phase.PLAYING
        self._cancel_audio()
        if still_on_line:
            self.advance()

    # -- navigation -------------------------------------------------------

    @property
    def choices(self) -> list[Connection]:
        if self.state.scene_id is None:
            return []
        return self.story.choices(self.state.scene_id)

    def advance(self) -> None:
        """Move to the next line, beat, or scene.

        Lines within a beat advance without interrupting a playing clip; a new
        beat or scene cancels it. At the end of a scene a single outgoing
        choice is followed automatically, several are shown, and none ends
        the scene.
        """
        if self.state.phase in (Phase.IDLE, Phase.CHOICES_SHOWN, Phase.SCENE_ENDED):
            return

        if self.state.line_index + 1 < len(self.state.lines):
            self.state.line_index += 1
            self.state.audio_error = None
            self._enter_line()
            return

        if self.state.beat_index + 1 < len(self._beats):
            self._cancel_audio()
            self.state.beat_index += 1
            self._load_lines()
            return

        choices = self.choices
        if len(choices) == 1:
            self.choose(choices[0].id)
        elif choices:
            self.state.choices = choices
            self._set_phase(Phase.CHOICES_SHOWN)
            self._emit(
                "choices",
                data={"choices": [{"id": c.id, "label": c.label} for c in choices]},
            )
        else:
            self._set_phase(Phase.SCENE_ENDED)
            self._emit("ended", "The End.")

    def skip(self) -> None:
        """Stop the current clip immediately and advance."""
        self._cancel_audio()
        self.advance()

    def choose(self, connection_id: str) -> bool:
        """Follow an outgoing connection of the current scene."""
        for connection in self.choices:
            if connection.id == connection_id:
                self.load_scene(connection.to_scene_id)
                return True
        return False

    # -- media ------------------------------------------------------------

    async def load_media(self) -> MediaRef | None:
        """Resolve the image or video for the current scene or beat.

        The result is dropped if the beat or scene changed meanwhile.
        """
        if self.blobs is None or self._scene is None:
            return None
        epoch = self._epoch
        media = await asyncio.to_thread(resolve_media, self._scene, self.current_beat, self.blobs)
        if epoch != self._epoch:
            return None
        self.state.media = media
        self._emit("media", data={"kind": media.kind, "url": media.url} if media else None)
        return media
