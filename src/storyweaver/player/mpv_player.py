"""Audio playback of generated speech using mpv."""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable

from storyweaver.audio.sink import MediaErrorCode, describe_media_error
from storyweaver.utils.console import console

# mpv_error codes meaning the file could not be demuxed or has no playable stream
_UNSUPPORTED_SOURCE_ERRORS = {-16, -17, -18}


def check_mpv() -> bool:
    """Check if mpv is available on the system."""
    return shutil.which("mpv") is not None


class MpvAudioSink:
    """AudioSink backed by libmpv.

    Each clip is written to a temporary file that lives until the clip is
    stopped or replaced. mpv reports end-of-file and load or decode
    failures from its own thread; both are handed back to the asyncio loop
    the sink was created on.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if not check_mpv():
            raise FileNotFoundError("mpv not found. Install it with: brew install mpv")

        try:
            import mpv
        except ImportError:
            raise ImportError("python-mpv is not installed. Install with: uv sync --extra player")

        self.on_ended: Callable[[], None] | None = None
        self.on_error: Callable[[str], None] | None = None
        self._loop = loop or asyncio.get_event_loop()
        self._clip: Path | None = None
        self._duration_hint: float | None = None
        self._playing = False

        self._end_file_error = mpv.MpvEventEndFile.ERROR
        self._player = mpv.MPV(video=False, keep_open="yes")
        self._player.observe_property("eof-reached", self._on_eof)
        self._player.event_callback("end-file")(self._on_end_file)

    def _on_eof(self, _name: str, value: object) -> None:
        if value and self._playing:
            self._loop.call_soon_threadsafe(self._ended)

    def _on_end_file(self, event: object) -> None:
        data = getattr(event, "data", None)
        if getattr(data, "reason", None) != self._end_file_error or not self._playing:
            return
        if getattr(data, "error", None) in _UNSUPPORTED_SOURCE_ERRORS:
            message = describe_media_error(MediaErrorCode.SRC_NOT_SUPPORTED)
        else:
            message = describe_media_error(MediaErrorCode.DECODE)
        self._loop.call_soon_threadsafe(self._failed, message)

    def _failed(self, message: str) -> None:
        if not self._playing:
            return
        self._playing = False
        if self.on_error:
            self.on_error(message)

    def _ended(self) -> None:
        if not self._playing:
            return
        self._playing = False
        if self.on_ended:
            self.on_ended()

    def load(self, audio: bytes, duration_hint: float | None = None) -> None:
        self.stop()
        fd, path = tempfile.mkstemp(prefix="storyweaver-", suffix=".mp3")
        with os.fdopen(fd, "wb") as f:
            f.write(audio)
        self._clip = Path(path)
        self._duration_hint = duration_hint

    def play(self) -> None:
        if self._clip is None:
            if self.on_error:
                self.on_error(describe_media_error(MediaErrorCode.SRC_NOT_SUPPORTED, source_missing=True))
            return
        try:
            self._player.play(str(self._clip))
            self._player.pause = False
        except Exception as e:
            console.print(f"[yellow]mpv could not play clip:[/yellow] {e}")
            if self.on_error:
                self.on_error(describe_media_error(MediaErrorCode.DECODE))
            return
        self._playing = True

    def stop(self) -> None:
        self._playing = False
        self._player.stop()
        if self._clip is not None:
            self._clip.unlink(missing_ok=True)
            self._clip = None
        self._duration_hint = None

    def terminate(self) -> None:
        self.stop()
        self._player.terminate()

    @property
    def position(self) -> float | None:
        return self._player.time_pos if self._playing else None

    @property
    def duration(self) -> float | None:
        return self._player.duration or self._duration_hint

    @property
    def is_playing(self) -> bool:
        return self._playing
