"""
API key validation with latency measurement.

Probes each provider's model listing endpoint with the configured key.
"""

import time
from dataclasses import dataclass
from typing import Optional

import requests


@dataclass
class ValidationResult:
    """Result of an API key validation test."""
    valid: bool
    latency_ms: Optional[int] = None
    error: Optional[str] = None


DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "groq": "https://api.groq.com/openai/v1",
    "gemini": "https://generativelanguage.googleapis.com",
}

# Shared session for connection reuse
_session = requests.Session()


def validate_provider_key(
    provider_id: str,
    api_key: str,
    base_url: str = "",
) -> ValidationResult:
    """
    Validate an API key with a minimal request.

    OpenAI-compatible providers are probed with GET {base_url}/models and a
    bearer token; Gemini takes the key as a query parameter.
    """
    if not api_key or len(api_key) < 10:
        return ValidationResult(valid=False, error="Key too short")

    base_url = (base_url or DEFAULT_BASE_URLS.get(provider_id, "")).rstrip("/")
    if not base_url:
        return ValidationResult(valid=False, error=f"No base URL for {provider_id}")

    try:
        start = time.perf_counter()
        if provider_id == "gemini":
            response = _session.get(f"{base_url}/v1beta/models", params={"key": api_key}, timeout=10)
        else:
            response = _session.get(
                f"{base_url}/models",
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10,
            )
        latency = int((time.perf_counter() - start) * 1000)

        if response.status_code == 200:
            return ValidationResult(valid=True, latency_ms=latency)
        elif response.status_code in (400, 401, 403):
            return ValidationResult(valid=False, error="Invalid key")
        else:
            return ValidationResult(valid=False, error=f"HTTP {response.status_code}")

    except requests.Timeout:
        return ValidationResult(valid=False, error="Timeout")
    except requests.RequestException as e:
        return ValidationResult(valid=False, error=str(e)[:50])
