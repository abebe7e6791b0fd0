"""
Recording pipeline: captured audio in, typed text out.

Voice activation and manual recording both end here. Audio is encoded to
WAV, transcribed (fusion when enabled, falling back to the single
configured provider) and typed into the focused app.
"""

import threading
import time
from typing import Callable, Optional

import numpy as np

from .audio import AudioEngine, audio_to_wav_bytes
from .errors import FusionInsufficientProvidersError
from .fusion import fusion_transcribe
from .metrics import (
    MetricsWriter, log_fusion_failed, log_recording_started, log_recording_stopped,
)
from .output import notify, play_busy_sound
from .providers import ProviderRegistry, create_provider
from .state import SessionContext
from .types import ConfigSnapshot


def transcribe_single(audio: bytes, config: ConfigSnapshot, registry: ProviderRegistry) -> str:
    """
    Transcribe with the configured STT provider alone.

    The provider is created and registered on first use.

    Raises:
        ConfigurationError: unsupported provider or missing API key
        ProviderError: the provider call failed
    """
    provider_id = config.stt_provider_id
    provider = registry.get(provider_id)
    if provider is None:
        provider = create_provider(provider_id, config)
        registry.register(provider)

    return provider.transcribe(audio)


class RecordingPipeline:
    """
    Recording sink for voice activation, and the manual record trigger.

    Capture runs on the shared AudioEngine; processing runs on a background
    thread per recording so the caller never blocks on the network.

    Usage:
        pipeline = RecordingPipeline(context, audio_engine, registry,
                                     monitor.effective_config, TextInserter())
        vae = VoiceActivationEngine(context, pipeline, config.voice_activation)
    """

    MANUAL_OWNER = "manual"

    def __init__(
        self,
        context: SessionContext,
        audio_engine: AudioEngine,
        registry: ProviderRegistry,
        config_fn: Callable[[], ConfigSnapshot],
        inserter,
        post_process: Optional[Callable[[str, ConfigSnapshot], str]] = None,
        on_complete: Optional[Callable[[Optional[str]], None]] = None,
        metrics: Optional[MetricsWriter] = None,
    ):
        self.context = context
        self.audio_engine = audio_engine
        self.registry = registry
        self.config_fn = config_fn
        self.inserter = inserter
        self.post_process = post_process
        self.on_complete = on_complete
        self.metrics = metrics

        self._capture_config: Optional[ConfigSnapshot] = None
        self._manual_start: float = 0.0
        self._lock = threading.Lock()

    # Recording sink

    def begin_capture(self) -> None:
        """Start buffering audio (pre-roll included)."""
        with self._lock:
            # Rules are resolved for the app the user is dictating into
            self._capture_config = self.config_fn()
        self.audio_engine.start_recording()

    def finalize_capture(self) -> None:
        """Stop buffering and process the recording in the background."""
        audio = self.audio_engine.stop_recording()
        with self._lock:
            config, self._capture_config = self._capture_config, None
        if config is None:
            config = self.config_fn()

        threading.Thread(
            target=self.process,
            args=(audio, config),
            daemon=True,
        ).start()

    # Manual trigger

    def start_manual(self) -> bool:
        """
        Start a manual recording.

        Returns:
            False if another recording is in progress (busy sound played)
        """
        if self.context.try_begin_recording(self.MANUAL_OWNER) is None:
            print(f"[Pipeline] Busy ({self.context.recording_owner()}), ignoring manual start")
            play_busy_sound()
            return False

        self._manual_start = time.monotonic()
        log_recording_started(self.metrics, self.MANUAL_OWNER)
        try:
            self.begin_capture()
        except Exception:
            self.context.end_recording(self.MANUAL_OWNER)
            raise
        return True

    def stop_manual(self) -> bool:
        """
        Stop a manual recording and process it.

        Returns:
            False if no manual recording was in progress
        """
        if self.context.recording_owner() != self.MANUAL_OWNER:
            return False

        try:
            self.finalize_capture()
        finally:
            self.context.end_recording(self.MANUAL_OWNER)

        duration_ms = (time.monotonic() - self._manual_start) * 1000
        log_recording_stopped(self.metrics, self.MANUAL_OWNER, "stop", duration_ms)
        return True

    # Processing

    def process(self, audio: np.ndarray, config: ConfigSnapshot) -> Optional[str]:
        """
        Transcribe, post-process and type one recording.

        Runs on a background thread. Never raises.

        Returns:
            The inserted text, or None if nothing was inserted
        """
        text: Optional[str] = None
        try:
            text = self._transcribe(audio, config)
            if text:
                self.inserter.insert(text)
        except Exception as e:
            print(f"[Pipeline] Transcription failed: {e}")
            notify(f"Transcription failed: {e}")
            text = None

        if self.on_complete:
            try:
                self.on_complete(text)
            except Exception as e:
                print(f"[Pipeline] on_complete error: {e}")
        return text

    def _transcribe(self, audio: np.ndarray, config: ConfigSnapshot) -> Optional[str]:
        if len(audio) == 0:
            print("[Pipeline] Empty recording, skipping")
            return None

        wav = audio_to_wav_bytes(audio, config.sample_rate)
        text: Optional[str] = None

        if config.fusion.enabled:
            try:
                result = fusion_transcribe(wav, config.fusion, self.registry, metrics=self.metrics)
                text = result.final_transcript
                print(f"[Pipeline] Fusion ({result.strategy}, {result.confidence:.2f}): \"{text[:50]}\"")
            except FusionInsufficientProvidersError as e:
                print(f"[Pipeline] {e}, falling back to {config.stt_provider_id}")
                log_fusion_failed(self.metrics, str(e))
            except Exception as e:
                print(f"[Pipeline] Fusion error: {e}, falling back to {config.stt_provider_id}")
                log_fusion_failed(self.metrics, str(e))

        if text is None:
            text = transcribe_single(wav, config, self.registry)

        text = text.strip()
        if text and config.transcript_post_processing_enabled and self.post_process:
            text = self.post_process(text, config).strip()

        return text or None
