"""
Tests for transcription providers, the registry and key validation.

HTTP sessions and SDK clients are mocked; nothing leaves the machine.
"""

import pytest
import requests
from unittest.mock import Mock, patch


def http_response(status=200, json_data=None, text="", reason="OK"):
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.reason = reason
    response.text = text
    response.json.return_value = json_data
    return response


class TestOpenAIWhisperProvider:
    """OpenAI-compatible /audio/transcriptions."""

    def test_transcribe_posts_wav(self):
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider

        provider = OpenAIWhisperProvider(api_key="sk-test", base_url="https://api.example.com/v1/")
        provider.session = Mock()
        provider.session.post.return_value = http_response(json_data={"text": "hello world"})

        assert provider.transcribe(b"RIFF....") == "hello world"

        args, kwargs = provider.session.post.call_args
        assert args[0] == "https://api.example.com/v1/audio/transcriptions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["data"]["model"] == "whisper-1"
        assert kwargs["files"]["file"][1] == b"RIFF...."

    def test_missing_key_raises_before_request(self):
        from fusionscribe.errors import ConfigurationError
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider

        provider = OpenAIWhisperProvider(api_key="")
        provider.session = Mock()

        with pytest.raises(ConfigurationError, match="API key not configured for openai"):
            provider.transcribe(b"wav")

        provider.session.post.assert_not_called()

    def test_http_error_raises_provider_error(self):
        from fusionscribe.errors import ProviderError
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider

        provider = OpenAIWhisperProvider(api_key="sk-test")
        provider.session = Mock()
        provider.session.post.return_value = http_response(
            status=401, text="invalid api key", reason="Unauthorized",
        )

        with pytest.raises(ProviderError) as exc_info:
            provider.transcribe(b"wav")

        assert exc_info.value.provider == "openai"
        assert "Unauthorized" in str(exc_info.value)

    def test_malformed_response(self):
        from fusionscribe.errors import ProviderError
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider

        provider = OpenAIWhisperProvider(api_key="sk-test")
        provider.session = Mock()
        provider.session.post.return_value = http_response(json_data={"unexpected": True})

        with pytest.raises(ProviderError, match="Malformed"):
            provider.transcribe(b"wav")

    def test_lifecycle(self):
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider

        provider = OpenAIWhisperProvider(api_key="sk-test")
        provider.initialize()
        assert isinstance(provider.session, requests.Session)

        provider.shutdown()
        assert provider.session is None


class TestGroqWhisperProvider:
    """Groq SDK transcription."""

    def test_transcribe_uses_client(self):
        from fusionscribe.providers.groq import GroqWhisperProvider

        provider = GroqWhisperProvider(api_key="gsk-test")
        provider.client = Mock()
        provider.client.audio.transcriptions.create.return_value = Mock(text="hello from groq")

        assert provider.transcribe(b"wav") == "hello from groq"

        kwargs = provider.client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["model"] == "whisper-large-v3"
        assert kwargs["file"] == ("recording.wav", b"wav")
        assert kwargs["temperature"] == 0.0

    def test_missing_key(self):
        from fusionscribe.errors import ConfigurationError
        from fusionscribe.providers.groq import GroqWhisperProvider

        provider = GroqWhisperProvider(api_key="")

        with pytest.raises(ConfigurationError):
            provider.transcribe(b"wav")

    def test_uninitialized_client(self):
        from fusionscribe.errors import ProviderError
        from fusionscribe.providers.groq import GroqWhisperProvider

        with pytest.raises(ProviderError, match="not initialized"):
            GroqWhisperProvider(api_key="gsk-test").transcribe(b"wav")

    def test_api_status_error(self):
        import httpx
        from groq import APIStatusError
        from fusionscribe.errors import ProviderError
        from fusionscribe.providers.groq import GroqWhisperProvider

        request = httpx.Request("POST", "https://api.groq.com/openai/v1/audio/transcriptions")
        error = APIStatusError(
            "rate limited",
            response=httpx.Response(429, request=request),
            body=None,
        )
        provider = GroqWhisperProvider(api_key="gsk-test")
        provider.client = Mock()
        provider.client.audio.transcriptions.create.side_effect = error

        with pytest.raises(ProviderError, match="HTTP 429"):
            provider.transcribe(b"wav")

    def test_initialize_strips_sdk_path(self):
        from fusionscribe.providers.groq import GroqWhisperProvider

        provider = GroqWhisperProvider(api_key="gsk-test", base_url="https://proxy.example.com/openai/v1")
        with patch("groq.Groq") as groq_cls:
            provider.initialize()

        assert groq_cls.call_args.kwargs["base_url"] == "https://proxy.example.com"
        assert provider.client is groq_cls.return_value


class TestRegistry:
    """ProviderRegistry and create_provider."""

    def test_register_initializes(self):
        from fusionscribe.providers import ProviderRegistry

        provider = Mock()
        provider.name = "fake"
        registry = ProviderRegistry()

        registry.register(provider)

        provider.initialize.assert_called_once()
        assert registry.get("fake") is provider
        assert registry.names() == ["fake"]

        registry.shutdown()
        provider.shutdown.assert_called_once()
        assert registry.get("fake") is None

    def test_create_provider(self):
        from fusionscribe.providers import create_provider
        from fusionscribe.providers.groq import GroqWhisperProvider
        from fusionscribe.providers.openai_whisper import OpenAIWhisperProvider
        from fusionscribe.types import ConfigSnapshot

        snapshot = ConfigSnapshot(openai_api_key="sk-a", groq_api_key="gsk-b")

        openai = create_provider("openai", snapshot)
        groq = create_provider("groq", snapshot, timeout=5.0)

        assert isinstance(openai, OpenAIWhisperProvider)
        assert openai.api_key == "sk-a"
        assert isinstance(groq, GroqWhisperProvider)
        assert groq.timeout == 5.0

    def test_create_unknown_provider(self):
        from fusionscribe.errors import ConfigurationError
        from fusionscribe.providers import create_provider
        from fusionscribe.types import ConfigSnapshot

        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            create_provider("gemini", ConfigSnapshot())


class TestValidateProviderKey:
    """API key probing."""

    def test_short_key(self):
        from fusionscribe.validate import validate_provider_key

        assert validate_provider_key("openai", "sk").error == "Key too short"

    def test_valid_key(self):
        from fusionscribe import validate

        with patch.object(validate, "_session") as session:
            session.get.return_value = http_response(200)
            result = validate.validate_provider_key("groq", "gsk-1234567890")

        assert result.valid is True
        assert result.latency_ms is not None
        assert session.get.call_args.args[0] == "https://api.groq.com/openai/v1/models"

    def test_invalid_key(self):
        from fusionscribe import validate

        with patch.object(validate, "_session") as session:
            session.get.return_value = http_response(401)
            result = validate.validate_provider_key("openai", "sk-1234567890")

        assert result.valid is False
        assert result.error == "Invalid key"

    def test_gemini_uses_query_key(self):
        from fusionscribe import validate

        with patch.object(validate, "_session") as session:
            session.get.return_value = http_response(200)
            validate.validate_provider_key("gemini", "AIza-1234567890")

        assert session.get.call_args.args[0].endswith("/v1beta/models")
        assert session.get.call_args.kwargs["params"] == {"key": "AIza-1234567890"}

    def test_timeout(self):
        from fusionscribe import validate

        with patch.object(validate, "_session") as session:
            session.get.side_effect = requests.Timeout()
            result = validate.validate_provider_key("openai", "sk-1234567890")

        assert result.error == "Timeout"
