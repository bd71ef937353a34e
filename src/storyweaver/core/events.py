"""Playback event system for streaming state to a renderer.

Provides a lightweight callback mechanism that the playback controller emits
events through. Renderers (the terminal player, tests) register a callback to
receive state changes and word highlights without touching playback logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

EVENT_KINDS = ("state", "line", "highlight", "media", "choices", "error", "ended")


@dataclass
class PlaybackEvent:
    """An event emitted during playback.

    Attributes:
        kind: One of EVENT_KINDS.
        message: Human-readable status message.
        data: Optional payload (e.g. word index, media URL, choice labels).
    """

    kind: str
    message: str = ""
    data: dict | None = field(default=None)


EventCallback = Callable[[PlaybackEvent], None]
