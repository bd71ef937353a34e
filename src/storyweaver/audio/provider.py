"""Speech generation via the ElevenLabs text-to-speech API.

The playback core treats the provider as a black box: text + voice in,
audio bytes + character alignment out. Any transport failure, non-2xx
status, or response without audio becomes a :class:`ProviderError`.
"""

from __future__ import annotations

import base64
import binascii
from typing import Protocol

import httpx

from storyweaver.core.config import TTSConfig
from storyweaver.core.errors import ConfigurationError, ProviderError
from storyweaver.core.models import SpeechResult
from storyweaver.text.alignment import parse_alignment

API_KEY_HEADER = "xi-api-key"


class SpeechProvider(Protocol):
    async def generate(self, text: str, voice_id: str, api_key: str) -> SpeechResult: ...


def _error_details(response: httpx.Response) -> str:
    details = f"Status: {response.status_code}"
    try:
        details += f", Message: {response.json()}"
    except ValueError:
        details += f", Body: {response.text[:500]}"
    return details


class ElevenLabsProvider:
    """SpeechProvider for the ElevenLabs ``with-timestamps`` endpoint."""

    def __init__(
        self,
        config: TTSConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or TTSConfig()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    def _request_body(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": self.config.model_id,
            "voice_settings": {
                "stability": self.config.stability,
                "similarity_boost": self.config.similarity_boost,
                "style": self.config.style,
                "use_speaker_boost": self.config.use_speaker_boost,
            },
        }

    async def generate(self, text: str, voice_id: str, api_key: str) -> SpeechResult:
        """Generate speech with character-level alignment.

        Raises:
            ConfigurationError: If text, voice id, or API key is missing.
            ProviderError: On network failure, non-2xx status, or a response
                without audio.
        """
        if not text or not voice_id or not api_key:
            raise ConfigurationError("Text, voice ID, and API key are required.")

        url = f"{self.config.base_url.rstrip('/')}/text-to-speech/{voice_id}/with-timestamps"
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            API_KEY_HEADER: api_key,
        }

        try:
            async with self._client() as client:
                response = await client.post(url, headers=headers, json=self._request_body(text))
        except httpx.HTTPError as e:
            raise ProviderError(f"Speech request failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"ElevenLabs API request failed. {_error_details(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("ElevenLabs returned a non-JSON response.") from e

        audio_b64 = data.get("audio_base64") if isinstance(data, dict) else None
        if not audio_b64:
            raise ProviderError("No audio data received from ElevenLabs API.")
        try:
            audio = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError("ElevenLabs returned undecodable audio.") from e

        return SpeechResult(audio=audio, alignment=parse_alignment(data))

    async def list_voices(self, api_key: str) -> list[dict]:
        """Fetch the voices available to an API key."""
        if not api_key:
            raise ConfigurationError("API key is required.")

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.config.base_url.rstrip('/')}/voices",
                    headers={API_KEY_HEADER: api_key},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Voice list request failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"ElevenLabs API request to get voices failed. {_error_details(response)}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("ElevenLabs returned a non-JSON voice list.") from e
        return data.get("voices", []) if isinstance(data, dict) else []
