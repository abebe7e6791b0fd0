"""
Configuration management with immutable snapshots.

Loads from: environment variables > settings.json > defaults
Provides immutable snapshots so engines never see a half-applied change.
"""

from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import os

from .types import (
    AppRule, ConfigSnapshot, FusionConfig, RuleOverrides,
    StreamingDictationConfig, VoiceActivationConfig,
)


# Defaults for top-level scalar settings
DEFAULT_CONFIG = {
    # Mode
    "mode": "voice-activation",
    "shortcut": "voice-activation",

    # Transcription
    "stt_provider_id": "openai",
    "transcript_post_processing_enabled": False,
    "transcript_post_processing_provider_id": "openai",
    "transcript_post_processing_prompt": "",

    # Endpoints
    "openai_base_url": "https://api.openai.com/v1",
    "groq_base_url": "https://api.groq.com/openai/v1",
    "gemini_base_url": "https://generativelanguage.googleapis.com",

    # App rules
    "enable_app_rules": False,
    "app_poll_interval": 2.0,

    # Audio
    "input_device": "",
    "sample_rate": 16000,
}

# Keys read from .env files and the environment
ENV_KEYS = {
    "OPENAI_API_KEY": "openai_api_key",
    "GROQ_API_KEY": "groq_api_key",
    "GEMINI_API_KEY": "gemini_api_key",
    "OPENAI_BASE_URL": "openai_base_url",
    "GROQ_BASE_URL": "groq_base_url",
}

# Settings written by older releases used camelCase keys
LEGACY_KEYS = {
    "sttProviderId": "stt_provider_id",
    "transcriptPostProcessingEnabled": "transcript_post_processing_enabled",
    "transcriptPostProcessingProviderId": "transcript_post_processing_provider_id",
    "transcriptPostProcessingPrompt": "transcript_post_processing_prompt",
    "enableAppRules": "enable_app_rules",
    "voiceActivation": "voice_activation",
    "streamingDictation": "streaming_dictation",
    "fusionTranscription": "fusion",
    "appRules": "app_rules",
}

_SECTION_KEYS = {
    "voice_activation": {
        "silenceThreshold": "silence_threshold_ms",
        "noiseGate": "noise_gate",
        "minRecordingDuration": "min_recording_duration_ms",
        "maxRecordingDuration": "max_recording_duration_ms",
    },
    "streaming_dictation": {
        "interimResults": "interim_results",
        "maxAlternatives": "max_alternatives",
        "enableVoiceCommands": "enable_voice_commands",
    },
    "fusion": {
        "primaryProvider": "primary_provider",
        "timeoutMs": "timeout_ms",
        "minProvidersRequired": "min_providers_required",
        "confidenceThreshold": "confidence_threshold",
        "enableParallel": "enable_parallel",
        "providerWeights": "provider_weights",
    },
}

_RULE_KEYS = {
    "appName": "app_name_pattern",
    "executable": "executable_pattern",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _coerce(default: Any, value: Any) -> Any:
    """Coerce a settings value to the type of its default."""
    if isinstance(default, bool):
        return _to_bool(value)
    if default is None or value is None:
        return value
    return type(default)(value)


def _apply_section(section: Any, data: Dict[str, Any], aliases: Dict[str, str]) -> None:
    """Apply a dict onto a dataclass instance, coercing to field types."""
    defaults = asdict(section)
    for key, value in data.items():
        key = aliases.get(key, key)
        if key not in defaults:
            continue
        default = defaults[key]
        if isinstance(default, (list, dict)):
            setattr(section, key, value)
        else:
            setattr(section, key, _coerce(default, value))


def parse_app_rule(data: Dict[str, Any]) -> AppRule:
    """Build an AppRule from its settings.json form (snake or camel case)."""
    data = {_RULE_KEYS.get(k, k): v for k, v in data.items()}
    data = {LEGACY_KEYS.get(k, k): v for k, v in data.items()}

    override_fields = RuleOverrides.__dataclass_fields__
    overrides = dict(data.get("overrides") or {})
    for key in override_fields:
        if key in data:
            overrides[key] = data[key]
    overrides = {LEGACY_KEYS.get(k, k): v for k, v in overrides.items()}

    return AppRule(
        id=str(data["id"]),
        app_name_pattern=str(data.get("app_name_pattern") or ""),
        executable_pattern=data.get("executable_pattern") or None,
        enabled=_to_bool(data.get("enabled", True)),
        priority=int(data.get("priority", 0)),
        overrides=RuleOverrides(**{k: v for k, v in overrides.items() if k in override_fields}),
    )


class Config:
    """
    Single source of truth for all settings.

    Usage:
        config = Config.load()
        snapshot = config.snapshot()  # Immutable copy for engines
    """

    def __init__(self, data_dir: Optional[Path] = None):
        # Mode
        self.mode: str = "voice-activation"
        self.shortcut: str = "voice-activation"

        # Transcription
        self.stt_provider_id: str = "openai"
        self.transcript_post_processing_enabled: bool = False
        self.transcript_post_processing_provider_id: str = "openai"
        self.transcript_post_processing_prompt: str = ""

        # API keys and endpoints
        self.openai_api_key: str = ""
        self.groq_api_key: str = ""
        self.gemini_api_key: str = ""
        self.openai_base_url: str = DEFAULT_CONFIG["openai_base_url"]
        self.groq_base_url: str = DEFAULT_CONFIG["groq_base_url"]
        self.gemini_base_url: str = DEFAULT_CONFIG["gemini_base_url"]

        # Engines
        self.voice_activation = VoiceActivationConfig()
        self.streaming_dictation = StreamingDictationConfig()
        self.fusion = FusionConfig()

        # App rules
        self.app_rules: List[AppRule] = []
        self.enable_app_rules: bool = False
        self.app_poll_interval: float = 2.0

        # Audio
        self.input_device: str = ""
        self.sample_rate: int = 16000

        # Paths
        self.data_dir: Path = data_dir or Path.home() / ".fusionscribe"
        self.metrics_file: Path = self.data_dir / "metrics.jsonl"
        self.settings_file: Path = self.data_dir / "settings.json"
        self.env_file: Path = self.data_dir / ".env"

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> "Config":
        """Load configuration from all sources."""
        config = cls(data_dir)
        config._ensure_data_dir()
        config._load_settings()
        config._load_env()
        return config

    def _ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _load_env(self) -> None:
        """Load API keys from .env files and environment."""
        # Project root first, then ~/.fusionscribe/.env
        env_file = Path(".env")
        if env_file.exists():
            self._parse_env_file(env_file)

        if self.env_file.exists():
            self._parse_env_file(self.env_file)

        # Environment variables override file values
        for env_key, attr in ENV_KEYS.items():
            setattr(self, attr, os.getenv(env_key, getattr(self, attr)))

    def _parse_env_file(self, env_file: Path) -> None:
        """Parse a .env file and extract API keys."""
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("'\"")

                    if key in ENV_KEYS:
                        setattr(self, ENV_KEYS[key], value)
        except OSError as e:
            print(f"[Config] Error loading {env_file}: {e}")

    def _load_settings(self) -> None:
        """Load settings from settings.json."""
        # Check project root first for backwards compatibility
        project_settings = Path("settings.json")
        if project_settings.exists():
            self._apply_settings_file(project_settings)

        # Then check ~/.fusionscribe/settings.json (overrides)
        if self.settings_file.exists():
            self._apply_settings_file(self.settings_file)

    def _apply_settings_file(self, settings_file: Path) -> None:
        """Apply settings from a JSON file."""
        try:
            with open(settings_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"[Config] Error loading {settings_file}: {e}")
            return

        try:
            self.apply(data)
        except (TypeError, ValueError, KeyError) as e:
            print(f"[Config] Invalid settings in {settings_file}: {e}")

    def apply(self, data: Dict[str, Any]) -> None:
        """Apply a settings dict (settings.json layout)."""
        data = {LEGACY_KEYS.get(k, k): v for k, v in data.items()}

        for key, default in DEFAULT_CONFIG.items():
            if key in data:
                setattr(self, key, _coerce(default, data[key]))

        for section in ("voice_activation", "streaming_dictation", "fusion"):
            if isinstance(data.get(section), dict):
                _apply_section(getattr(self, section), data[section], _SECTION_KEYS[section])

        if isinstance(data.get("app_rules"), list):
            self.app_rules = [parse_app_rule(rule) for rule in data["app_rules"]]

    def snapshot(self) -> ConfigSnapshot:
        """
        Return immutable copy for engines.

        Raises:
            ConfigurationError: if an invariant does not hold
        """
        self.voice_activation.validate()
        self.fusion.validate()

        return ConfigSnapshot(
            mode=self.mode,
            shortcut=self.shortcut,
            stt_provider_id=self.stt_provider_id,
            transcript_post_processing_enabled=self.transcript_post_processing_enabled,
            transcript_post_processing_provider_id=self.transcript_post_processing_provider_id,
            transcript_post_processing_prompt=self.transcript_post_processing_prompt,
            openai_api_key=self.openai_api_key,
            openai_base_url=self.openai_base_url,
            groq_api_key=self.groq_api_key,
            groq_base_url=self.groq_base_url,
            gemini_api_key=self.gemini_api_key,
            gemini_base_url=self.gemini_base_url,
            voice_activation=VoiceActivationConfig(**asdict(self.voice_activation)),
            streaming_dictation=StreamingDictationConfig(**asdict(self.streaming_dictation)),
            fusion=FusionConfig(**asdict(self.fusion)),
            app_rules=tuple(self.app_rules),
            enable_app_rules=self.enable_app_rules,
            app_poll_interval=self.app_poll_interval,
            input_device=self.input_device,
            sample_rate=self.sample_rate,
        )
