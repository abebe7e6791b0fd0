"""
Transcription providers with lifecycle management.

Each provider holds its own state (HTTP session or SDK client) and
turns WAV bytes into a transcript string. Providers raise on failure;
the fusion engine decides what a failure means.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import threading

from ..errors import ConfigurationError
from ..types import ConfigSnapshot


DEFAULT_PROVIDER_TIMEOUT = 30.0


class TranscriptionProvider(ABC):
    """
    Base class for transcription providers.

    Subclasses must implement:
    - initialize(): Create HTTP session / SDK client
    - transcribe(): Transcribe WAV bytes to text
    - shutdown(): Free resources
    """

    name: str = "base"
    api_key: str = ""

    @abstractmethod
    def initialize(self) -> None:
        """Create the HTTP session or SDK client."""
        pass

    @abstractmethod
    def transcribe(self, audio: bytes) -> str:
        """
        Transcribe audio to text.

        Args:
            audio: WAV file bytes (16kHz, mono, PCM16)

        Returns:
            The transcript

        Raises:
            ConfigurationError: API key missing (raised before any request)
            ProviderError: the API answered with an error
        """
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Close the HTTP session or SDK client."""
        pass

    def _require_api_key(self) -> None:
        if not self.api_key:
            raise ConfigurationError(f"API key not configured for {self.name}")


class ProviderRegistry:
    """
    Manages provider lifecycle.

    Usage:
        registry = ProviderRegistry()
        registry.register(OpenAIWhisperProvider(api_key))
        registry.register(GroqWhisperProvider(api_key))

        result = fusion_transcribe(wav_bytes, fusion_config, registry)
    """

    def __init__(self):
        self.providers: Dict[str, TranscriptionProvider] = {}
        self._lock = threading.Lock()

    def register(self, provider: TranscriptionProvider) -> None:
        """
        Register and initialize a provider.

        Args:
            provider: Provider instance to register
        """
        provider.initialize()
        with self._lock:
            self.providers[provider.name] = provider

    def get(self, name: str) -> Optional[TranscriptionProvider]:
        """Get a provider by name."""
        with self._lock:
            return self.providers.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self.providers)

    def values(self) -> List[TranscriptionProvider]:
        """Get all registered providers."""
        with self._lock:
            return list(self.providers.values())

    def shutdown(self) -> None:
        """Shutdown all providers."""
        with self._lock:
            for provider in self.providers.values():
                try:
                    provider.shutdown()
                except Exception as e:
                    print(f"Error shutting down {provider.name}: {e}")
            self.providers.clear()


def create_provider(
    provider_id: str,
    config: ConfigSnapshot,
    timeout: float = DEFAULT_PROVIDER_TIMEOUT,
) -> TranscriptionProvider:
    """
    Build the provider for `provider_id` from config.

    A missing API key is not an error here; the provider raises
    ConfigurationError when asked to transcribe.

    Raises:
        ConfigurationError: unknown provider id
    """
    if provider_id == "openai":
        from .openai_whisper import OpenAIWhisperProvider
        return OpenAIWhisperProvider(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=timeout,
        )
    if provider_id == "groq":
        from .groq import GroqWhisperProvider
        return GroqWhisperProvider(
            api_key=config.groq_api_key,
            base_url=config.groq_base_url,
            timeout=timeout,
        )
    raise ConfigurationError(f"Unsupported provider: {provider_id}")
