"""Realtime word highlighting.

The scheduler runs once per frame while a line's audio is playing and maps
the fused playback position to the index of the word being spoken. A fixed
prediction offset is added before matching so the highlight lands on a word
as it is heard rather than just after.

With word timestamps the index is the segment containing the compensated
time, or the nearest segment boundary when none contains it. Without
timestamps the index is interpolated linearly from progress through the
clip.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable

from storyweaver.core.config import PlayerConfig
from storyweaver.core.models import WordTimestamp
from storyweaver.playback.clock import ClockFusion


@dataclass(frozen=True)
class HighlightFrame:
    """One scheduler step.

    Attributes:
        index: Current word index, -1 when nothing should be highlighted.
        time: Fused playback position in seconds (without the offset).
        done: True once the scheduler has stopped iterating.
    """

    index: int
    time: float
    done: bool = False


def match_word_index(timestamps: list[WordTimestamp], time_ms: float) -> int:
    """Index of the segment containing ``time_ms``, else the nearest one.

    Nearest means the smallest distance to either boundary; ties go to the
    earlier segment. Returns -1 only for an empty list.
    """
    best, best_distance = -1, math.inf
    for i, ts in enumerate(timestamps):
        if ts.start_ms <= time_ms <= ts.end_ms:
            return i
        distance = min(abs(time_ms - ts.start_ms), abs(time_ms - ts.end_ms))
        if distance < best_distance:
            best, best_distance = i, distance
    return best


def interpolate_word_index(time_s: float, duration_s: float, count: int) -> int:
    """Linear word index from progress through the clip, clamped to range."""
    if count <= 0 or duration_s <= 0:
        return -1
    progress = min(time_s / duration_s, 1.0)
    return min(max(math.floor(progress * count), 0), count - 1)


class HighlightScheduler:
    """Per-frame word index computation for one playing line.

    Args:
        text: Line text; its whitespace-separated words drive the
            interpolation fallback.
        timestamps: Word timestamps for the clip (may be empty).
        duration: Clip duration in seconds, or a callable returning it (None
            while the backend does not know it yet).
        position: Returns the audio backend's live position in seconds, or
            None when unknown.
        clock: Monotonic wall clock in seconds.
        config: Player tuning (offset, recalibration threshold, end
            progress, frame rate).
    """

    def __init__(
        self,
        text: str,
        timestamps: list[WordTimestamp],
        duration: float | Callable[[], float | None],
        position: Callable[[], float | None],
        clock: Callable[[], float] = time.perf_counter,
        config: PlayerConfig | None = None,
    ) -> None:
        self.config = config or PlayerConfig()
        self.timestamps = timestamps
        self._duration = duration if callable(duration) else (lambda: duration)
        self._text_words = text.split()
        self._position = position
        self._clock = clock
        self._fusion = ClockFusion(self.config.recalibration_threshold_ms / 1000)
        self._stopped = False
        self.index = -1

    @property
    def words(self) -> list[str]:
        """Words the index refers to."""
        if self.timestamps:
            return [t.word for t in self.timestamps]
        return self._text_words

    @property
    def duration(self) -> float:
        return self._duration() or 0.0

    @property
    def active(self) -> bool:
        return not self._stopped and bool(self.words)

    def stop(self) -> None:
        self._stopped = True

    def tick(self, now: float | None = None) -> HighlightFrame:
        """Compute the current word index at wall time ``now``."""
        if not self.active:
            self.index = -1
            return HighlightFrame(index=-1, time=0.0, done=True)

        duration = self.duration
        if duration <= 0:
            # Nothing to match against until the clip length is known
            self.index = -1
            return HighlightFrame(index=-1, time=0.0)

        now = self._clock() if now is None else now
        precise = self._fusion.estimate(now, self._position())
        compensated = precise + self.config.prediction_offset_ms / 1000
        end_progress = self.config.end_progress

        if self.timestamps:
            index = match_word_index(self.timestamps, compensated * 1000)
            done = index >= len(self.timestamps) - 1 and precise >= duration * end_progress
        else:
            index = interpolate_word_index(compensated, duration, len(self._text_words))
            done = min(compensated / duration, 1.0) >= end_progress

        self.index = index
        if done:
            self._stopped = True
        return HighlightFrame(index=index, time=precise, done=done)

    async def run(self, on_frame: Callable[[HighlightFrame], None]) -> int:
        """Tick every frame until done or stopped.

        ``on_frame`` is called whenever the word index changes, and once more
        for the final frame. Returns the last index.
        """
        interval = 1 / max(self.config.frame_rate, 1)
        last = None
        while not self._stopped:
            frame = self.tick()
            if frame.index != last or frame.done:
                on_frame(frame)
                last = frame.index
            if frame.done:
                break
            await asyncio.sleep(interval)
        return self.index
