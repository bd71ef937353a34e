"""Split scene content and beats into speaker-tagged lines with voices.

Scene content is parsed line by line: ``Name: text`` is dialogue attributed
to ``Name``, anything else is narration. Beats with pre-split parts are used
verbatim; a beat without parts is one narrator line.

Voice resolution for each line:
1. the character voice map (speaker name, case-insensitive);
2. for the narrator, the narrator chain (language-specific narrator voice,
   then the global narrator voice);
3. the fallback voice, only when the line has text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from storyweaver.core.config import DEFAULT_VOICE_ID
from storyweaver.core.models import NARRATOR, Beat, Line, Scene, VoiceAssignment

DIALOGUE_RE = re.compile(r"^([\w\s.-]+):\s*(.*)$")


@dataclass
class NarratorChain:
    """Narrator voice preference: language-specific, then global."""

    global_voice: str | None = None
    by_language: dict[str, str] = field(default_factory=dict)
    language: str = "en"

    def resolve(self) -> str | None:
        return self.by_language.get(self.language) or self.global_voice


def build_voice_map(assignments: list[VoiceAssignment]) -> dict[str, str]:
    """Character name -> voice id, keyed case-insensitively."""
    voices: dict[str, str] = {}
    for assignment in assignments:
        name = assignment.character_name.strip()
        if name and assignment.voice_id:
            voices[name.casefold()] = assignment.voice_id
    return voices


def resolve_voice(
    speaker: str,
    text: str,
    voice_map: dict[str, str],
    narrator: NarratorChain,
    fallback_voice: str | None = DEFAULT_VOICE_ID,
) -> str | None:
    voice = voice_map.get(speaker.strip().casefold())
    if not voice and speaker == NARRATOR:
        voice = narrator.resolve()
    if not voice and text:
        voice = fallback_voice
    return voice or None


def parse_scene(
    scene: Scene,
    voice_map: dict[str, str],
    narrator: NarratorChain,
    fallback_voice: str | None = DEFAULT_VOICE_ID,
) -> list[Line]:
    """Parse unstructured scene content into lines.

    Blank source lines are dropped; line ids keep the source line index so
    they stay stable when blank lines are edited.
    """
    lines = []
    for index, raw in enumerate(scene.content.split("\n")):
        match = DIALOGUE_RE.match(raw)
        if match:
            speaker, text = match.group(1).strip(), match.group(2).strip()
        else:
            speaker, text = NARRATOR, raw.strip()
        if not text:
            continue
        lines.append(
            Line(
                id=f"line-{scene.id}-{index}",
                text=text,
                speaker=speaker,
                voice_id=resolve_voice(speaker, text, voice_map, narrator, fallback_voice),
            )
        )
    return lines


def parse_beat(
    beat: Beat,
    voice_map: dict[str, str],
    narrator: NarratorChain,
    fallback_voice: str | None = DEFAULT_VOICE_ID,
) -> list[Line]:
    """Turn a beat into lines, one per part.

    A voice id stored on a part takes precedence over resolution.
    """
    parts = [(p.speaker, p.text, p.voice_id) for p in beat.parts or []]
    if not parts:
        parts = [(NARRATOR, beat.text, None)]

    lines = []
    for index, (speaker, text, voice_id) in enumerate(parts):
        voice = voice_id or resolve_voice(speaker, text, voice_map, narrator, fallback_voice)
        lines.append(
            Line(id=f"beat-{beat.id}-part-{index}", text=text, speaker=speaker, voice_id=voice)
        )
    return lines
