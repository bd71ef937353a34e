"""Persistent audio cache with an identifier-tolerant lookup ladder.

Generated clips are stored in a PersistentStore under

    audio_<sceneId>_<beatId>_<language>_<speaker>_<timestamp>

with the audio as a ``data:audio/mpeg;base64,...`` URL, and the provider
alignment as JSON under the same key with an ``alignment_`` prefix. Speaker
underscores are written as ``-`` so the last four fields can always be split
from the right.

Scene and beat ids are regenerated when a story goes through an export/import
round trip, so an exact key lookup stops hitting after an import. Lookup
therefore walks a ladder, first hit wins:
1. exact: scene, beat, language and speaker all match;
2. position: the scene matches and the beat id is the one cached at the same
   beat position (beat ids ordered by when they were first recorded);
3. last resort: the beat id appears anywhere with matching language and
   speaker, whatever the scene.
Within a strategy the newest entry wins.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass

from storyweaver.core.models import CachedAudio, CharacterAlignment, WordAlignment
from storyweaver.storage.store import PersistentStore
from storyweaver.text.alignment import parse_alignment
from storyweaver.utils.console import console

AUDIO_PREFIX = "audio_"
ALIGNMENT_PREFIX = "alignment_"
_AUDIO_MIME = "audio/mpeg"


def encode_speaker(speaker: str) -> str:
    """Speaker name as written into cache keys."""
    return speaker.replace("_", "-")


def key_prefix(scene_id: str, beat_id: str, language: str, speaker: str) -> str:
    return f"{AUDIO_PREFIX}{scene_id}_{beat_id}_{language}_{encode_speaker(speaker)}_"


def alignment_key(audio_key: str) -> str:
    return ALIGNMENT_PREFIX + audio_key[len(AUDIO_PREFIX) :]


@dataclass(frozen=True)
class CacheKey:
    """A parsed audio cache key."""

    key: str
    scene_id: str
    beat_id: str
    language: str
    speaker: str
    timestamp: int


def parse_key(key: str, scene_id: str) -> CacheKey | None:
    """Parse an audio key known to belong to ``scene_id``.

    The scene id must be supplied because ids may themselves contain
    underscores; everything after it is split from the right.
    """
    prefix = f"{AUDIO_PREFIX}{scene_id}_"
    if not key.startswith(prefix):
        return None
    parts = key[len(prefix) :].rsplit("_", 3)
    if len(parts) != 4 or not parts[0]:
        return None
    beat_id, language, speaker, stamp = parts
    try:
        timestamp = int(stamp)
    except ValueError:
        return None
    return CacheKey(key, scene_id, beat_id, language, speaker, timestamp)


def _timestamp_of(key: str) -> int:
    try:
        return int(key.rsplit("_", 1)[-1])
    except ValueError:
        return 0


def decode_audio(value: str | bytes | None) -> bytes | None:
    """Decode a stored audio value (raw bytes, data URL, or bare base64)."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value or None
    payload = value.split(",", 1)[1] if value.startswith("data:") else value
    try:
        audio = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return None
    return audio or None


def encode_audio(audio: bytes) -> str:
    return f"data:{_AUDIO_MIME};base64,{base64.b64encode(audio).decode('ascii')}"


def _alignment_text(alignment) -> str | None:
    if isinstance(alignment, CharacterAlignment):
        return "".join(str(c) for c in alignment.characters)
    if isinstance(alignment, list):
        return " ".join(w.word for w in alignment)
    return None


def _normalize_text(text: str) -> str:
    return "".join(text.split())


class AudioCacheLookup:
    """Find previously generated audio for a line despite identifier churn."""

    def __init__(self, store: PersistentStore) -> None:
        self.store = store

    def find(
        self,
        scene_id: str,
        beat_id: str,
        speaker: str,
        language: str,
        beat_index: int | None = None,
        text: str | None = None,
    ) -> CachedAudio | None:
        """Search the cache ladder for a clip.

        Args:
            scene_id: Current scene id.
            beat_id: Current beat id (line id outside beat mode).
            speaker: Speaker name of the line.
            language: Story language code.
            beat_index: Position of the beat in its scene; enables the
                position-based strategy.
            text: Line text. When given, entries whose stored alignment
                spells a different text are skipped.

        Returns:
            The cached clip, or None on a miss.
        """
        keys = [k for k in self.store.keys() if k.startswith(AUDIO_PREFIX)]

        strategies = (
            ("exact", lambda: self._exact(keys, scene_id, beat_id, language, speaker)),
            ("position", lambda: self._positional(keys, scene_id, beat_index, language, speaker)),
            ("last resort", lambda: self._anywhere(keys, beat_id, language, speaker)),
        )
        for name, candidates in strategies:
            for key in candidates():
                hit = self._load(key, text)
                if hit is not None:
                    console.print(f"[dim]Audio found in cache ({name}): {key}[/dim]")
                    return hit
        return None

    def _exact(self, keys, scene_id, beat_id, language, speaker) -> list[str]:
        prefix = key_prefix(scene_id, beat_id, language, speaker)
        return self._newest_first(k for k in keys if k.startswith(prefix))

    def _positional(self, keys, scene_id, beat_index, language, speaker) -> list[str]:
        if beat_index is None or beat_index < 0:
            return []
        parsed = [p for p in (parse_key(k, scene_id) for k in keys) if p is not None]

        first_seen: dict[str, int] = {}
        for p in parsed:
            first_seen[p.beat_id] = min(p.timestamp, first_seen.get(p.beat_id, p.timestamp))
        ordered = sorted(first_seen, key=lambda b: (first_seen[b], b))
        if beat_index >= len(ordered):
            return []

        positional_beat = ordered[beat_index]
        wanted_speaker = encode_speaker(speaker)
        return self._newest_first(
            p.key
            for p in parsed
            if p.beat_id == positional_beat
            and p.language == language
            and p.speaker == wanted_speaker
        )

    def _anywhere(self, keys, beat_id, language, speaker) -> list[str]:
        needle = f"_{beat_id}_{language}_{encode_speaker(speaker)}_"
        return self._newest_first(k for k in keys if needle in k)

    @staticmethod
    def _newest_first(keys) -> list[str]:
        return sorted(keys, key=_timestamp_of, reverse=True)

    def _load(self, key: str, text: str | None) -> CachedAudio | None:
        audio = decode_audio(self.store.get(key))
        if audio is None:
            return None

        alignment = None
        raw = self.store.get(alignment_key(key))
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        if raw:
            try:
                alignment = parse_alignment(json.loads(raw))
            except json.JSONDecodeError:
                alignment = None

        if text is not None and alignment is not None:
            spoken = _alignment_text(alignment)
            if spoken is not None and _normalize_text(spoken) != _normalize_text(text):
                return None

        return CachedAudio(key=key, audio=audio, alignment=alignment)


def _serialize_alignment(alignment) -> str | None:
    if isinstance(alignment, CharacterAlignment):
        return json.dumps(
            {
                "characters": alignment.characters,
                "character_start_times_seconds": alignment.char_start,
                "character_end_times_seconds": alignment.char_end,
            },
            ensure_ascii=False,
        )
    if isinstance(alignment, list) and all(isinstance(w, WordAlignment) for w in alignment):
        return json.dumps(
            [{"word": w.word, "start": w.start, "end": w.end} for w in alignment],
            ensure_ascii=False,
        )
    return None


class AudioCacheRecorder:
    """Write freshly generated clips into the store, one new key per call."""

    def __init__(self, store: PersistentStore) -> None:
        self.store = store
        self._last_timestamp = 0

    def _next_timestamp(self) -> int:
        now = int(time.time() * 1000)
        self._last_timestamp = max(now, self._last_timestamp + 1)
        return self._last_timestamp

    def record(
        self,
        scene_id: str,
        beat_id: str,
        language: str,
        speaker: str,
        audio: bytes,
        alignment: CharacterAlignment | list[WordAlignment] | None = None,
    ) -> str:
        """Persist a clip and its alignment. Returns the audio key."""
        prefix = key_prefix(scene_id, beat_id, language, speaker)
        key = f"{prefix}{self._next_timestamp()}"
        while self.store.get(key) is not None:
            key = f"{prefix}{self._next_timestamp()}"

        serialized = _serialize_alignment(alignment)
        if serialized is not None:
            self.store.set(alignment_key(key), serialized)
        self.store.set(key, encode_audio(audio))
        return key


def cache_info(store: PersistentStore) -> dict:
    """Summarize cached audio: entry count, stored size in characters, keys."""
    keys = sorted(k for k in store.keys() if k.startswith(AUDIO_PREFIX))
    size = 0
    for key in keys:
        value = store.get(key)
        if value:
            size += len(value)
    return {"count": len(keys), "estimated_size": size, "keys": keys}


def clear_audio_cache(store: PersistentStore) -> int:
    """Delete all cached audio and alignment entries. Returns audio entries removed."""
    removed = 0
    for key in list(store.keys()):
        if key.startswith(AUDIO_PREFIX):
            store.delete(key)
            removed += 1
        elif key.startswith(ALIGNMENT_PREFIX):
            store.delete(key)
    return removed
