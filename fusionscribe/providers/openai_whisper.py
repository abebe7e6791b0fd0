"""
OpenAI-compatible Whisper API provider.

Works with any endpoint that implements POST {base_url}/audio/transcriptions.
"""

from typing import Optional

import requests

from . import TranscriptionProvider, DEFAULT_PROVIDER_TIMEOUT
from ..errors import ProviderError


class OpenAIWhisperProvider(TranscriptionProvider):
    """
    Cloud transcription using OpenAI's Whisper API.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = (base_url or "https://api.openai.com/v1").rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session: Optional[requests.Session] = None

    def initialize(self) -> None:
        """Create HTTP session for connection reuse."""
        self.session = requests.Session()
        if not self.api_key:
            print(f"[{self.name}] No API key provided")
        else:
            print(f"[{self.name}] Initialized (model: {self.model})")

    def transcribe(self, audio: bytes) -> str:
        """
        Transcribe WAV bytes via the Whisper API.

        Raises:
            ConfigurationError: no API key
            ProviderError: non-2xx response
        """
        self._require_api_key()
        session = self.session or requests.Session()

        response = session.post(
            f"{self.base_url}/audio/transcriptions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            files={"file": ("recording.wav", audio, "audio/wav")},
            data={"model": self.model, "response_format": "json"},
            timeout=self.timeout,
        )

        if not response.ok:
            raise ProviderError(self.name, f"{response.reason}: {response.text[:300]}")

        try:
            return response.json()["text"]
        except (ValueError, KeyError) as e:
            raise ProviderError(self.name, f"Malformed response: {e}")

    def shutdown(self) -> None:
        """Close HTTP session."""
        if self.session is not None:
            self.session.close()
            self.session = None
        print(f"[{self.name}] Shutdown")
