"""StoryWeaver: visual novel playback with word-synchronized narration."""

__version__ = "0.1.0"
