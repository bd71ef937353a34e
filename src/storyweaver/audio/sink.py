"""Audio output abstraction used by the playback controller.

An AudioSink plays one clip at a time and reports its live position. It
signals completion through ``on_ended`` and media failures through
``on_error``; both are invoked on the asyncio loop thread.
"""

from __future__ import annotations

import asyncio
import time
from enum import IntEnum
from typing import Callable, Protocol


class MediaErrorCode(IntEnum):
    ABORTED = 1
    NETWORK = 2
    DECODE = 3
    SRC_NOT_SUPPORTED = 4


def describe_media_error(code: int | None, source_missing: bool = False) -> str:
    """User-facing message for a playback failure."""
    if code is None:
        return "Audio playback error."
    if code == MediaErrorCode.ABORTED:
        return "Playback aborted."
    if code == MediaErrorCode.NETWORK:
        return "Network error during playback."
    if code == MediaErrorCode.DECODE:
        return "Error decoding audio."
    if code == MediaErrorCode.SRC_NOT_SUPPORTED:
        message = "Audio format/source not supported."
        if source_missing:
            message += " (Source was empty or invalid)."
        return message
    return f"Unknown playback error (Code: {code})"


class AudioSink(Protocol):
    on_ended: Callable[[], None] | None
    on_error: Callable[[str], None] | None

    def load(self, audio: bytes, duration_hint: float | None = None) -> None: ...

    def play(self) -> None: ...

    def stop(self) -> None: ...

    @property
    def position(self) -> float | None: ...

    @property
    def duration(self) -> float | None: ...

    @property
    def is_playing(self) -> bool: ...


class SilentAudioSink:
    """Clock-driven sink that produces no sound.

    Plays for ``duration_hint`` seconds (usually the end of the last aligned
    word) and then fires ``on_ended``. Used by ``--mute`` and in tests.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        autofinish: bool = True,
    ) -> None:
        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self._clock = clock
        self._autofinish = autofinish
        self._audio: bytes | None = None
        self._duration: float | None = None
        self._started_at: float | None = None
        self._timer: asyncio.TimerHandle | None = None
        self.loads = 0

    def load(self, audio: bytes, duration_hint: float | None = None) -> None:
        self.stop()
        self._audio = audio
        self._duration = duration_hint
        self.loads += 1

    def play(self) -> None:
        if not self._audio:
            if self.on_error:
                self.on_error(describe_media_error(MediaErrorCode.SRC_NOT_SUPPORTED, source_missing=True))
            return
        self._started_at = self._clock()
        if self._autofinish and self._duration:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._timer = loop.call_later(self._duration, self.finish)

    def finish(self) -> None:
        """End playback as if the clip ran out."""
        if self._started_at is None:
            return
        self._cancel_timer()
        self._started_at = None
        if self.on_ended:
            self.on_ended()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop(self) -> None:
        self._cancel_timer()
        self._started_at = None
        self._audio = None
        self._duration = None

    @property
    def position(self) -> float | None:
        if self._started_at is None:
            return None
        elapsed = self._clock() - self._started_at
        if self._duration is not None:
            elapsed = min(elapsed, self._duration)
        return elapsed

    @property
    def duration(self) -> float | None:
        return self._duration

    @property
    def is_playing(self) -> bool:
        return self._started_at is not None
