"""Alignment conversion: provider timing data to word-level timestamps.

Providers report timing either per character (ElevenLabs ``with-timestamps``)
or, in older cached entries, per word. Both are normalized to a list of
:class:`WordTimestamp` in integer milliseconds that the highlight scheduler
can match against the live audio position.

Everything here is pure and deterministic. Malformed input never raises: it
degrades to an empty list, which playback treats as "no word timing".
"""

from __future__ import annotations

import math
from typing import Any

from storyweaver.core.models import CharacterAlignment, WordAlignment, WordTimestamp
from storyweaver.text.segmenter import WordSegmenter

_DEFAULT_SEGMENTER = WordSegmenter()


# Longer than any clip; larger values are treated as corrupt timing
MAX_SECONDS = 1e7


def seconds_to_ms(seconds: float) -> int:
    """Round seconds to the nearest millisecond (half rounds up).

    Raises:
        ValueError: If the time is not finite or does not fit in milliseconds.
    """
    ms = seconds * 1000 + 0.5
    if not math.isfinite(ms):
        raise ValueError(f"Time out of range: {seconds!r}")
    return int(math.floor(ms))


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and abs(value) <= MAX_SECONDS
    )


def parse_alignment(payload: Any) -> CharacterAlignment | list[WordAlignment] | None:
    """Coerce an untrusted alignment payload into a typed alignment.

    Accepts already-typed alignments, ElevenLabs JSON
    (``characters`` / ``character_start_times_seconds`` /
    ``character_end_times_seconds``), the short ``charStart`` / ``charEnd``
    form, and legacy ``[{word, start, end}, ...]`` arrays.

    Returns None when the payload is not recognizable. Array lengths are
    not validated here; :func:`to_word_timestamps` does that.
    """
    if payload is None:
        return None
    if isinstance(payload, CharacterAlignment):
        return payload
    if isinstance(payload, dict):
        # Provider responses nest the arrays; the raw alignment spells the
        # displayed text, the normalized one may not
        for nested in ("alignment", "normalized_alignment"):
            if isinstance(payload.get(nested), (dict, list)):
                return parse_alignment(payload[nested])
        chars = payload.get("characters")
        starts = payload.get("character_start_times_seconds", payload.get("charStart"))
        ends = payload.get("character_end_times_seconds", payload.get("charEnd"))
        if isinstance(chars, list) and isinstance(starts, list) and isinstance(ends, list):
            return CharacterAlignment(characters=chars, char_start=starts, char_end=ends)
        return None
    if isinstance(payload, list):
        words = []
        for entry in payload:
            if isinstance(entry, WordAlignment):
                words.append(entry)
            elif isinstance(entry, dict):
                word, start, end = entry.get("word"), entry.get("start"), entry.get("end")
                if isinstance(word, str) and _is_number(start) and _is_number(end):
                    words.append(WordAlignment(word=word, start=float(start), end=float(end)))
        return words
    return None


def _from_characters(
    alignment: CharacterAlignment, segmenter: WordSegmenter
) -> list[tuple[str, float, float]]:
    chars, starts, ends = alignment.characters, alignment.char_start, alignment.char_end
    if not (len(chars) == len(starts) == len(ends)):
        return []
    # One code point per entry; anything else cannot be classified by script
    if not all(isinstance(c, str) and len(c) == 1 for c in chars):
        return []
    if not all(_is_number(v) for v in starts) or not all(_is_number(v) for v in ends):
        return []

    segments = []
    for first, stop in segmenter.spans(chars):
        word = "".join(chars[first:stop])
        segments.append((word, starts[first], ends[stop - 1]))
    return segments


def _monotonic(segments: list[tuple[str, float, float]]) -> list[WordTimestamp]:
    """Convert to milliseconds, clamping so starts never decrease and end >= start."""
    result: list[WordTimestamp] = []
    last_start = 0
    for word, start, end in segments:
        start_ms = max(seconds_to_ms(start), last_start)
        end_ms = max(seconds_to_ms(end), start_ms)
        result.append(WordTimestamp(word=word, start_ms=start_ms, end_ms=end_ms))
        last_start = start_ms
    return result


def to_word_timestamps(
    raw: Any,
    segmenter: WordSegmenter | None = None,
) -> list[WordTimestamp]:
    """Convert raw alignment data into ordered word timestamps.

    Args:
        raw: A typed alignment, a provider JSON payload, a legacy word list,
            or None.
        segmenter: Word segmenter for character alignments (script-aware
            default).

    Returns:
        Word timestamps with non-decreasing ``start_ms`` and
        ``end_ms >= start_ms``. Empty when timing is unavailable or the
        character arrays have mismatched lengths.
    """
    alignment = parse_alignment(raw)
    if alignment is None:
        return []

    if isinstance(alignment, CharacterAlignment):
        segments = _from_characters(alignment, segmenter or _DEFAULT_SEGMENTER)
    else:
        segments = [
            (w.word, w.start, w.end)
            for w in alignment
            if isinstance(w.word, str) and _is_number(w.start) and _is_number(w.end)
        ]

    try:
        return _monotonic(segments)
    except ValueError:
        return []


def total_duration_ms(timestamps: list[WordTimestamp]) -> int:
    """End of the last word, or 0 when there is no timing."""
    return max((t.end_ms for t in timestamps), default=0)
