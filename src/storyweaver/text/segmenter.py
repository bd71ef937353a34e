"""Script-aware word segmentation.

Space-delimited scripts split on whitespace only; punctuation stays attached
to its word ("Bob." is one word). Japanese and Chinese are written without
spaces, so boundaries are declared by script instead:
- after CJK punctuation (。、！？「」 and full-width forms),
- at a change of CJK sub-type (e.g. Katakana -> Hiragana), except
  Kanji -> Hiragana, which keeps okurigana with its stem (食べ),
- after 3 characters in one segment, to keep highlighting granular.

The segmenter works on character sequences so the alignment converter can
apply it directly to provider character timings.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

# Segment length cap for scripts without word spacing
MAX_CJK_SEGMENT = 3


class Script(str, Enum):
    SPACE = "space"
    OTHER = "other"  # Latin, Cyrillic, Hangul, digits... anything space-delimited
    HIRAGANA = "hiragana"
    KATAKANA = "katakana"
    KANJI = "kanji"
    FULLWIDTH = "fullwidth"  # full-width letters and digits
    CJK_PUNCT = "cjk_punct"
    PROLONG = "prolong"  # ー and 々 continue whatever precedes them


_CJK_SCRIPTS = {Script.HIRAGANA, Script.KATAKANA, Script.KANJI, Script.FULLWIDTH}

# Opening brackets attach to the following segment instead of closing one
_OPENING_PUNCT = set("「『（【〈《〔［｛〘〖")

_FULLWIDTH_PUNCT = set("！＂＃＄％＆＇（）＊＋，－．／：；＜＝＞？＠［＼］＾＿｀｛｜｝～｟｠｡｢｣､･")


def classify(ch: str) -> Script:
    """Classify a single character by script."""
    if ch.isspace():
        return Script.SPACE
    code = ord(ch)
    if ch in ("ー", "々", "ｰ"):
        return Script.PROLONG
    if 0x3000 <= code <= 0x303F:
        return Script.CJK_PUNCT
    if 0x3040 <= code <= 0x309F:
        return Script.HIRAGANA
    if 0x30A0 <= code <= 0x30FF or 0x31F0 <= code <= 0x31FF:
        return Script.KATAKANA
    if 0x4E00 <= code <= 0x9FFF or 0x3400 <= code <= 0x4DBF or 0xF900 <= code <= 0xFAFF:
        return Script.KANJI
    if ch in _FULLWIDTH_PUNCT:
        return Script.CJK_PUNCT
    if 0xFF66 <= code <= 0xFF9F:
        return Script.KATAKANA  # half-width katakana
    if 0xFF00 <= code <= 0xFFEF:
        return Script.FULLWIDTH
    return Script.OTHER


def is_cjk(script: Script) -> bool:
    return script in _CJK_SCRIPTS


def breaks_between(prev: Script, cur: Script) -> bool:
    """Whether a boundary falls between two adjacent non-space characters."""
    if cur in (Script.PROLONG, Script.CJK_PUNCT) or prev == Script.CJK_PUNCT:
        return False
    if prev == cur:
        return False
    if prev == Script.KANJI and cur == Script.HIRAGANA:
        return False
    return is_cjk(prev) or is_cjk(cur)


class WordSegmenter:
    """Split a character sequence into word (or CJK segment) spans."""

    def __init__(self, max_cjk_segment: int = MAX_CJK_SEGMENT) -> None:
        self.max_cjk_segment = max_cjk_segment

    def spans(self, chars: Sequence[str]) -> list[tuple[int, int]]:
        """Return half-open ``[start, end)`` index spans over ``chars``.

        Whitespace never belongs to a span; every other character belongs to
        exactly one.
        """
        spans: list[tuple[int, int]] = []
        start: int | None = None
        prev: Script | None = None
        run_script: Script | None = None

        def close(end: int) -> None:
            nonlocal start, prev, run_script
            if start is not None and end > start:
                spans.append((start, end))
            start = None
            prev = None
            run_script = None

        for i, ch in enumerate(chars):
            raw = classify(ch)
            if raw == Script.SPACE:
                close(i)
                continue

            script = (run_script or Script.OTHER) if raw == Script.PROLONG else raw

            if start is not None and prev is not None:
                length = i - start
                if (
                    prev == Script.CJK_PUNCT
                    and raw != Script.CJK_PUNCT
                    and chars[i - 1] not in _OPENING_PUNCT
                ):
                    close(i)
                elif breaks_between(prev, script):
                    close(i)
                elif raw != Script.PROLONG and is_cjk(script) and length >= self.max_cjk_segment:
                    close(i)

            if start is None:
                start = i
            prev = script
            if script != Script.CJK_PUNCT:
                run_script = script

        close(len(chars))
        return spans

    def split(self, text: str) -> list[str]:
        """Split text into words using the same rules as :meth:`spans`."""
        return [text[s:e] for s, e in self.spans(text)]
