"""Load authored story JSON into models.

Accepts the editor's story format (camelCase keys) either bare or wrapped in
a backup envelope ``{"story": {...}}``. Fields the player does not use
(canvas positions, prompts, translations) are ignored.
"""

from __future__ import annotations

import json
from pathlib import Path

from storyweaver.core.errors import StoryFormatError
from storyweaver.core.models import (
    Beat,
    BeatPart,
    Connection,
    Scene,
    Story,
    VoiceAssignment,
)


def _require_id(data: dict, what: str) -> str:
    value = data.get("id")
    if not isinstance(value, str) or not value:
        raise StoryFormatError(f"{what} without an id: {json.dumps(data)[:80]}")
    return value


def _parse_part(data: dict) -> BeatPart:
    return BeatPart(
        speaker=str(data.get("speaker") or "Narrator"),
        text=str(data.get("text") or ""),
        voice_id=data.get("voiceId") or None,
    )


def _parse_beat(data: dict, position: int) -> Beat:
    parts = data.get("parts")
    order = data.get("order")
    return Beat(
        id=_require_id(data, "Beat"),
        order=order if isinstance(order, int) else position,
        text=str(data.get("text") or ""),
        parts=[_parse_part(p) for p in parts if isinstance(p, dict)] if isinstance(parts, list) else None,
        image_ref=data.get("imageId") or None,
        video_ref=data.get("videoId") or None,
    )


def _parse_scene(data: dict) -> Scene:
    beats = data.get("beats") or []
    return Scene(
        id=_require_id(data, "Scene"),
        title=str(data.get("title") or ""),
        content=str(data.get("content") or ""),
        image_ref=data.get("generatedImageId") or None,
        beats=[_parse_beat(b, i) for i, b in enumerate(beats) if isinstance(b, dict)],
        is_subdivided=bool(data.get("isSubdivided")),
    )


def story_from_dict(data: dict) -> Story:
    """Build a Story from decoded JSON.

    Raises:
        StoryFormatError: If scenes are missing or an entity lacks an id.
    """
    if isinstance(data.get("story"), dict):
        data = data["story"]

    scenes = data.get("scenes")
    if not isinstance(scenes, list):
        raise StoryFormatError("Story has no scenes list.")

    connections = []
    for c in data.get("connections") or []:
        if not isinstance(c, dict):
            continue
        if not c.get("fromSceneId") or not c.get("toSceneId"):
            raise StoryFormatError(f"Connection {c.get('id')!r} is missing an endpoint.")
        connections.append(
            Connection(
                id=_require_id(c, "Connection"),
                from_scene_id=c["fromSceneId"],
                to_scene_id=c["toSceneId"],
                label=str(c.get("label") or ""),
            )
        )

    voices = [
        VoiceAssignment(
            character_name=str(v.get("characterName") or ""),
            voice_id=str(v.get("voiceId") or ""),
            image_ref=v.get("imageId") or None,
        )
        for v in data.get("voiceAssignments") or []
        if isinstance(v, dict)
    ]

    narrator_voices = data.get("narratorVoiceAssignments") or {}
    return Story(
        scenes=[_parse_scene(s) for s in scenes if isinstance(s, dict)],
        connections=connections,
        start_scene_id=data.get("startSceneId") or None,
        voice_assignments=voices,
        narrator_voice_id=data.get("narratorVoiceId") or None,
        narrator_voices={str(k): str(v) for k, v in narrator_voices.items() if v},
    )


def load_story(path: Path) -> Story:
    """Read a story JSON file.

    Raises:
        StoryFormatError: If the file is not valid story JSON.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StoryFormatError(f"{path.name} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise StoryFormatError(f"{path.name} does not contain a story object.")
    return story_from_dict(data)
