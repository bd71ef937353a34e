"""Shared data models for StoryWeaver."""

from __future__ import annotations

from dataclasses import dataclass, field

NARRATOR = "Narrator"


@dataclass(frozen=True)
class Line:
    """A speaker-tagged unit of content shown and spoken as one slide."""

    id: str
    text: str
    speaker: str
    voice_id: str | None = None

    @property
    def is_spoken(self) -> bool:
        return bool(self.text) and bool(self.voice_id)


@dataclass
class BeatPart:
    """A pre-split speaker/text pair inside a beat."""

    speaker: str
    text: str
    voice_id: str | None = None


@dataclass
class Beat:
    """A single authored step of a subdivided scene."""

    id: str
    order: int
    text: str
    parts: list[BeatPart] | None = None
    image_ref: str | None = None
    video_ref: str | None = None


@dataclass
class Scene:
    id: str
    title: str
    content: str = ""
    image_ref: str | None = None
    beats: list[Beat] = field(default_factory=list)
    is_subdivided: bool = False

    @property
    def in_beat_mode(self) -> bool:
        return self.is_subdivided and bool(self.beats)

    def sorted_beats(self) -> list[Beat]:
        return sorted(self.beats, key=lambda b: b.order)


@dataclass
class Connection:
    id: str
    from_scene_id: str
    to_scene_id: str
    label: str = ""


@dataclass
class VoiceAssignment:
    character_name: str
    voice_id: str
    image_ref: str | None = None


@dataclass
class Story:
    """Authored story graph, consumed read-only by playback."""

    scenes: list[Scene]
    connections: list[Connection] = field(default_factory=list)
    start_scene_id: str | None = None
    voice_assignments: list[VoiceAssignment] = field(default_factory=list)
    narrator_voice_id: str | None = None
    narrator_voices: dict[str, str] = field(default_factory=dict)

    def scene(self, scene_id: str | None) -> Scene | None:
        """Look up a scene by id, or None if it does not exist."""
        if scene_id is None:
            return None
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def choices(self, scene_id: str) -> list[Connection]:
        """Outgoing connections of a scene, in authored order."""
        return [c for c in self.connections if c.from_scene_id == scene_id]

    @property
    def first_scene_id(self) -> str | None:
        if self.start_scene_id and self.scene(self.start_scene_id):
            return self.start_scene_id
        return self.scenes[0].id if self.scenes else None


@dataclass(frozen=True)
class WordTimestamp:
    """A word (or CJK segment) with its spoken window in milliseconds."""

    word: str
    start_ms: int
    end_ms: int


@dataclass
class CharacterAlignment:
    """Character-synchronized alignment as returned by a TTS provider (seconds)."""

    characters: list[str]
    char_start: list[float]
    char_end: list[float]


@dataclass
class WordAlignment:
    """Legacy word-level alignment entry (seconds)."""

    word: str
    start: float
    end: float


AlignmentRaw = CharacterAlignment | list[WordAlignment]


@dataclass
class SpeechResult:
    """Fresh audio from a SpeechProvider."""

    audio: bytes
    alignment: AlignmentRaw | None = None


@dataclass
class CachedAudio:
    """Audio recovered from the persistent cache."""

    key: str
    audio: bytes
    alignment: AlignmentRaw | None = None


@dataclass(frozen=True)
class MediaRef:
    """A displayable image or video resolved for the current scene or beat."""

    kind: str  # "image" or "video"
    url: str
