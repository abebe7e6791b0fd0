"""
Groq Whisper API provider for cloud transcription.
"""

from . import TranscriptionProvider, DEFAULT_PROVIDER_TIMEOUT
from ..errors import ProviderError


class GroqWhisperProvider(TranscriptionProvider):
    """
    Cloud transcription using Groq's Whisper API.

    Fast cloud-based transcription with low latency.
    """

    name = "groq"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "whisper-large-v3",
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.client = None

    def initialize(self) -> None:
        """Create Groq client."""
        if not self.api_key:
            print(f"[{self.name}] No API key provided")
            return

        try:
            from groq import Groq

            # The SDK appends /openai/v1 itself
            base_url = self.base_url.removesuffix("/openai/v1") if self.base_url else None
            self.client = Groq(api_key=self.api_key, base_url=base_url, timeout=self.timeout)
            print(f"[{self.name}] Initialized")

        except Exception as e:
            print(f"[{self.name}] Failed to initialize: {e}")
            self.client = None

    def transcribe(self, audio: bytes) -> str:
        """
        Transcribe WAV bytes using Groq Whisper API.

        Raises:
            ConfigurationError: no API key
            ProviderError: client unavailable or API error
        """
        self._require_api_key()

        if self.client is None:
            raise ProviderError(self.name, "Groq client not initialized")

        from groq import APIStatusError

        try:
            response = self.client.audio.transcriptions.create(
                file=("recording.wav", audio),
                model=self.model,
                response_format="json",
                temperature=0.0,
            )
        except APIStatusError as e:
            raise ProviderError(self.name, f"HTTP {e.status_code}: {str(e.message)[:300]}")

        return response.text

    def shutdown(self) -> None:
        """Close client."""
        if self.client is not None:
            self.client.close()
        self.client = None
        print(f"[{self.name}] Shutdown")
