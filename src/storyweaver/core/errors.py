"""Exception taxonomy for StoryWeaver."""

from __future__ import annotations


class StoryWeaverError(Exception):
    """Base class for exceptions raised by StoryWeaver."""


class ConfigurationError(StoryWeaverError):
    """A line cannot be voiced because of missing settings (API key, voice)."""


class ProviderError(StoryWeaverError):
    """The speech provider failed (HTTP status, transport, or empty payload)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoryFormatError(StoryWeaverError):
    """A story file is missing required data."""
