"""Story language definitions.

Languages a story can be played in. The language selects the per-language
narrator voice and is part of every audio cache key.
"""

from __future__ import annotations

STORY_LANGUAGES: dict[str, str] = {
    "en": "english",
    "es": "spanish",
    "pt": "portuguese",
    "fr": "french",
    "de": "german",
    "it": "italian",
    "ja": "japanese",
    "ko": "korean",
    "zh": "chinese",
}


def is_valid_language(code: str) -> bool:
    """Check if a language code is supported."""
    return code in STORY_LANGUAGES


def language_name(code: str) -> str:
    """Get the full language name for a code, or the code itself if unknown."""
    return STORY_LANGUAGES.get(code, code)


def validate_language(code: str) -> str:
    """Validate a language code and return it, raising ValueError if invalid."""
    if code not in STORY_LANGUAGES:
        raise ValueError(
            f"Unsupported language: '{code}'. "
            f"Run 'storyweaver languages' to see all {len(STORY_LANGUAGES)} supported languages."
        )
    return code
