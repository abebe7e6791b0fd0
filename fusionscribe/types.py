"""
Shared type definitions for FusionScribe.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Literal, Tuple

from .errors import ConfigurationError


FusionStrategy = Literal[
    "best-confidence",
    "primary-fallback",
    "majority-vote",
    "weighted-average",
    "consensus",
]

FUSION_STRATEGIES: Tuple[str, ...] = (
    "best-confidence",
    "primary-fallback",
    "majority-vote",
    "weighted-average",
    "consensus",
)

STT_PROVIDERS: Tuple[str, ...] = ("openai", "groq")


@dataclass
class VoiceActivationConfig:
    """Thresholds for hands-free recording. Levels are on the 0-100 scale."""
    enabled: bool = True
    sensitivity: float = 30
    silence_threshold_ms: int = 2000
    noise_gate: float = 20
    min_recording_duration_ms: int = 500
    max_recording_duration_ms: int = 30000

    def validate(self) -> None:
        if not 0 <= self.sensitivity <= 100:
            raise ConfigurationError(
                f"voice_activation.sensitivity must be within 0-100, got {self.sensitivity}"
            )
        if self.min_recording_duration_ms >= self.max_recording_duration_ms:
            raise ConfigurationError(
                "voice_activation.min_recording_duration_ms must be lower than "
                "max_recording_duration_ms"
            )


@dataclass
class StreamingDictationConfig:
    """Continuous recognition settings."""
    enabled: bool = False
    language: str = "en-US"
    continuous: bool = True
    interim_results: bool = True
    max_alternatives: int = 1
    sensitivity: float = 50
    enable_voice_commands: bool = True
    restart_delay_ms: int = 100


@dataclass
class StreamingDictationState:
    """Runtime state of a dictation session. Mutated only by the session."""
    is_active: bool = False
    is_listening: bool = False
    is_paused: bool = False
    current_text: str = ""      # interim preview, never inserted
    last_final_text: str = ""
    confidence: float = 0.0
    audio_level: float = 0.0
    language: str = "en-US"
    words_spoken: int = 0
    start_time: float = 0.0
    last_error: Optional[str] = None


@dataclass
class RecordingSession:
    """The single in-progress recording."""
    owner: str                  # "voice-activation" | "manual" | "dictation"
    started_at: float
    is_active: bool = True


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of one provider call inside a fusion run."""
    provider: str
    transcript: str
    confidence: float
    processing_time_ms: int
    success: bool
    error: Optional[str] = None


@dataclass
class FusionConfig:
    """How to query and merge multiple STT providers."""
    enabled: bool = False
    strategy: str = "best-confidence"
    providers: List[str] = field(default_factory=lambda: ["openai", "groq"])
    primary_provider: Optional[str] = "openai"
    timeout_ms: int = 30000
    min_providers_required: int = 1
    confidence_threshold: float = 0.7
    enable_parallel: bool = True
    provider_weights: Dict[str, float] = field(
        default_factory=lambda: {"openai": 1.0, "groq": 0.9, "gemini": 0.8}
    )

    def validate(self) -> None:
        if self.strategy not in FUSION_STRATEGIES:
            raise ConfigurationError(f"Unknown fusion strategy: {self.strategy}")
        if self.min_providers_required > len(self.providers):
            raise ConfigurationError(
                f"fusion.min_providers_required ({self.min_providers_required}) exceeds "
                f"the number of providers ({len(self.providers)})"
            )
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ConfigurationError("fusion.confidence_threshold must be within 0-1")
        if self.timeout_ms <= 0:
            raise ConfigurationError("fusion.timeout_ms must be positive")


@dataclass(frozen=True)
class FusionResult:
    """Merged transcript plus every provider result that fed into it."""
    final_transcript: str
    confidence: float
    strategy: str
    results: List[TranscriptionResult]
    processing_time_ms: int
    providers_used: List[str]


@dataclass(frozen=True)
class FusionCheck:
    """Outcome of a fusion configuration self-test."""
    success: bool
    available_providers: List[str]
    errors: List[str]


@dataclass(frozen=True)
class RuleOverrides:
    """Fields an app rule may override. None / empty means "keep global"."""
    shortcut: Optional[str] = None
    stt_provider_id: Optional[str] = None
    transcript_post_processing_enabled: Optional[bool] = None
    transcript_post_processing_provider_id: Optional[str] = None
    transcript_post_processing_prompt: Optional[str] = None


@dataclass(frozen=True)
class AppRule:
    """Per-application configuration override."""
    id: str
    app_name_pattern: str
    executable_pattern: Optional[str] = None
    enabled: bool = True
    priority: int = 0
    overrides: RuleOverrides = field(default_factory=RuleOverrides)


@dataclass
class ActiveAppInfo:
    """The foreground application, refreshed by polling."""
    name: str               # e.g., "Code"
    executable: str         # e.g., "Code.exe" or "Visual Studio Code.app"
    title: str              # e.g., "main.py - fusionscribe"
    last_updated: float


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable snapshot of configuration.
    Engines only ever read snapshots; the Config object owns mutation.
    """
    # Mode
    mode: str = "voice-activation"      # "voice-activation" | "streaming-dictation"
    shortcut: str = "voice-activation"

    # Transcription
    stt_provider_id: str = "openai"
    transcript_post_processing_enabled: bool = False
    transcript_post_processing_provider_id: str = "openai"
    transcript_post_processing_prompt: str = ""

    # API keys and endpoints
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com"

    # Engines
    voice_activation: VoiceActivationConfig = field(default_factory=VoiceActivationConfig)
    streaming_dictation: StreamingDictationConfig = field(default_factory=StreamingDictationConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)

    # App rules
    app_rules: Tuple[AppRule, ...] = ()
    enable_app_rules: bool = False
    app_poll_interval: float = 2.0

    # Audio
    input_device: str = ""
    sample_rate: int = 16000

    def api_key_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_key", "") or ""

    def base_url_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_base_url", "") or ""
