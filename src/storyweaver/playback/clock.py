"""Clock fusion: a smooth playback position from two imperfect clocks.

Audio backends report their position coarsely (often in 20-50ms steps), so
reading it directly every frame makes the highlight stutter. The wall clock
is smooth but knows nothing about buffering or seeks. ``ClockFusion`` anchors
the wall clock to the audio position once audio has actually started, then
reads the wall clock; whenever the two disagree by more than the threshold it
re-anchors on the audio position.
"""

from __future__ import annotations


class ClockFusion:
    """Estimate the audio position in seconds.

    Args:
        threshold_s: Drift between the wall-clock estimate and the reported
            audio position that triggers recalibration.
    """

    def __init__(self, threshold_s: float = 0.1) -> None:
        self.threshold_s = threshold_s
        self.recalibrations = 0
        self._anchor: float | None = None

    @property
    def calibrated(self) -> bool:
        return self._anchor is not None

    def reset(self) -> None:
        self._anchor = None
        self.recalibrations = 0

    def estimate(self, now: float, audio_position: float | None) -> float:
        """Return the best position estimate at wall time ``now``.

        Until the audio reports a position above zero the reported position
        is used as-is (0.0 when unknown).
        """
        if audio_position is None:
            if self._anchor is None:
                return 0.0
            return now - self._anchor

        # Calibrate only once the audio has really started
        if self._anchor is None:
            if audio_position > 0:
                self._anchor = now - audio_position
            return audio_position

        estimate = now - self._anchor
        if abs(estimate - audio_position) > self.threshold_s:
            self._anchor = now - audio_position
            self.recalibrations += 1
            return audio_position
        return estimate
