"""Configuration system for StoryWeaver.

Layered config loading (lowest to highest priority):
1. config/default.toml (shipped with package)
2. ~/.config/storyweaver/config.toml (user-level)
3. ./storyweaver.toml (project-level)
4. Environment variables (SW_PLAYER__LANGUAGE, SW_TTS__MODEL_ID, etc.)
5. CLI flags
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings, EnvSettingsSource, SettingsConfigDict

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent.parent
_DEFAULT_CONFIG = _PACKAGE_ROOT / "config" / "default.toml"
_USER_CONFIG = Path.home() / ".config" / "storyweaver" / "config.toml"
_PROJECT_CONFIG = Path("storyweaver.toml")

# Shell/.env key wins over the configured one
API_KEY_ENV_VAR = "ELEVENLABS_API_KEY"

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"


class TTSConfig(BaseModel):
    api_key: str | None = None
    base_url: str = "https://api.elevenlabs.io/v1"
    model_id: str = "eleven_multilingual_v2"
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True
    timeout: float = 60.0
    fallback_voice_id: str = DEFAULT_VOICE_ID


class PlayerConfig(BaseModel):
    language: str = "en"
    prediction_offset_ms: float = 75.0
    recalibration_threshold_ms: float = 100.0
    end_progress: float = 0.95
    frame_rate: int = 60
    audio_backend: str = "mpv"  # "mpv" or "silent"
    use_cache: bool = True


class SWConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SW_",
        env_nested_delimiter="__",
    )

    tts: TTSConfig = TTSConfig()
    player: PlayerConfig = PlayerConfig()
    workspace_dir: Path = Path("./storyweaver_workspace")

    @property
    def store_path(self) -> Path:
        """Persistent key-value store holding cached audio and alignment."""
        return self.workspace_dir / ".cache" / "store.json"

    @property
    def media_dir(self) -> Path:
        """Directory of image/video blobs referenced by story ids."""
        return self.workspace_dir / "media"


def resolve_api_key(config: TTSConfig) -> str | None:
    """Return the speech API key, preferring the environment over config."""
    return os.environ.get(API_KEY_ENV_VAR) or config.api_key


def _load_toml(path: Path) -> dict:
    """Load a TOML file if it exists, return empty dict otherwise."""
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(**cli_overrides: object) -> SWConfig:
    """Load configuration from all layers and merge.

    Args:
        **cli_overrides: Direct overrides from CLI flags. Keys can be
            dot-separated (e.g. player.language="es").
    """
    config_data: dict = {}
    for path in (_DEFAULT_CONFIG, _USER_CONFIG, _PROJECT_CONFIG):
        layer = _load_toml(path)
        config_data = _deep_merge(config_data, layer)

    # Flatten 'general' section into top-level
    if "general" in config_data:
        general = config_data.pop("general")
        config_data = _deep_merge(config_data, general)

    # SW_* variables outrank every TOML layer; init kwargs would otherwise
    # shadow them
    config_data = _deep_merge(config_data, EnvSettingsSource(SWConfig)())

    for key, value in cli_overrides.items():
        if value is None:
            continue
        parts = key.split(".")
        target = config_data
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    return SWConfig(**config_data)
