"""
Transcript post-processing with a chat LLM.

The configured prompt is sent as the system message, with `{transcript}`
replaced by the transcript. App rules can switch the provider or the prompt
per application; the pipeline hands over the effective config.
"""

import threading
from typing import Optional

import requests

from .errors import ConfigurationError, ProviderError
from .types import ConfigSnapshot


CHAT_MODELS = {
    "openai": "gpt-4o-mini",
    "groq": "llama-3.1-70b-versatile",
    "gemini": "gemini-1.5-flash-002",
}

# Fallback order when the requested provider has no key
CHAT_PROVIDERS = ("openai", "groq", "gemini")

DEFAULT_TIMEOUT = 15.0

# Persistent session for connection reuse
_session = requests.Session()

# Groq client, recreated when the key or endpoint changes
_groq_client = None
_groq_client_key = None
_groq_lock = threading.Lock()


def _get_groq_client(api_key: str, base_url: str, timeout: float):
    global _groq_client, _groq_client_key

    key = (api_key, base_url)
    with _groq_lock:
        if _groq_client is None or _groq_client_key != key:
            from groq import Groq

            # The SDK appends /openai/v1 itself
            _groq_client = Groq(
                api_key=api_key,
                base_url=base_url.removesuffix("/openai/v1") or None,
                timeout=timeout,
            )
            _groq_client_key = key
        return _groq_client


def select_chat_provider(config: ConfigSnapshot, requested: str) -> Optional[str]:
    """The requested provider if it has a key, else the first one that does."""
    if requested in CHAT_MODELS and config.api_key_for(requested):
        return requested

    for provider_id in CHAT_PROVIDERS:
        if config.api_key_for(provider_id):
            print(f"[PostProcess] {requested} unavailable, falling back to {provider_id}")
            return provider_id
    return None


def post_process_transcript(
    transcript: str,
    config: ConfigSnapshot,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """
    Rewrite a transcript with the configured prompt.

    Returns the transcript unchanged when post-processing is disabled or no
    prompt is set.

    Raises:
        ConfigurationError: no chat provider has an API key
        ProviderError: the provider answered with an error
    """
    if not config.transcript_post_processing_enabled or not config.transcript_post_processing_prompt:
        return transcript

    prompt = config.transcript_post_processing_prompt.replace("{transcript}", transcript)

    provider_id = select_chat_provider(config, config.transcript_post_processing_provider_id)
    if provider_id is None:
        raise ConfigurationError(
            "No available providers for transcript post-processing. "
            "Configure an API key for openai, groq or gemini."
        )

    print(f"[PostProcess] Using {provider_id}")
    if provider_id == "groq":
        return _call_groq(prompt, config, timeout)
    if provider_id == "gemini":
        return _call_gemini(prompt, config, timeout)
    return _call_openai(prompt, config, timeout)


def _call_openai(prompt: str, config: ConfigSnapshot, timeout: float) -> str:
    base_url = config.openai_base_url.rstrip("/")
    response = _session.post(
        f"{base_url}/chat/completions",
        headers={
            "Authorization": f"Bearer {config.openai_api_key}",
            "Content-Type": "application/json",
        },
        json={
            "temperature": 0,
            "model": CHAT_MODELS["openai"],
            "messages": [{"role": "system", "content": prompt}],
        },
        timeout=timeout,
    )

    if not response.ok:
        raise ProviderError("openai", f"openai API error: {response.reason} - {response.text[:300]}")

    try:
        return response.json()["choices"][0]["message"]["content"].strip()
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProviderError("openai", f"Malformed response: {e}")


def _call_groq(prompt: str, config: ConfigSnapshot, timeout: float) -> str:
    from groq import APIStatusError

    client = _get_groq_client(config.groq_api_key, config.groq_base_url, timeout)
    try:
        completion = client.chat.completions.create(
            model=CHAT_MODELS["groq"],
            messages=[{"role": "system", "content": prompt}],
            temperature=0,
        )
    except APIStatusError as e:
        raise ProviderError("groq", f"groq API error: HTTP {e.status_code} - {str(e.message)[:300]}")

    return (completion.choices[0].message.content or "").strip()


def _call_gemini(prompt: str, config: ConfigSnapshot, timeout: float) -> str:
    base_url = config.gemini_base_url.rstrip("/")
    response = _session.post(
        f"{base_url}/v1beta/models/{CHAT_MODELS['gemini']}:generateContent",
        params={"key": config.gemini_api_key},
        json={
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0},
        },
        timeout=timeout,
    )

    if not response.ok:
        raise ProviderError("gemini", f"gemini API error: {response.reason} - {response.text[:300]}")

    try:
        result = response.json()
        return result["candidates"][0]["content"]["parts"][0]["text"].strip()
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ProviderError("gemini", f"Malformed response: {e}")
