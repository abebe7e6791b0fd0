"""
Exception types shared across FusionScribe.

Engines that run inside audio or recognizer callbacks never raise these;
they print and keep going. Fusion is the only caller-facing failure path.
"""


class FusionScribeError(Exception):
    """Base class for all FusionScribe errors."""


class ConfigurationError(FusionScribeError):
    """Invalid configuration, or a provider requested without an API key."""


class ProviderError(FusionScribeError):
    """A transcription provider answered with an error."""

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider


class FusionInsufficientProvidersError(FusionScribeError):
    """Fewer providers succeeded than the fusion config requires."""

    def __init__(self, succeeded: int, required: int):
        super().__init__(
            f"Fusion failed: Only {succeeded} providers succeeded, "
            f"but {required} required"
        )
        self.succeeded = succeeded
        self.required = required
