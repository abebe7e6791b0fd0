"""
Main entry point for FusionScribe.

Run with: python -m fusionscribe
"""

import signal
import sys
import threading
from typing import Optional

from pynput import keyboard

from . import __version__
from .audio import AudioEngine
from .config import Config
from .context import AppContextMonitor
from .dictation import StreamingDictationSession
from .errors import ConfigurationError
from .fusion import check_fusion_configuration
from .metrics import MetricsWriter, get_metrics
from .output import TextInserter, notify
from .pipeline import RecordingPipeline
from .postprocess import post_process_transcript
from .providers import ProviderRegistry, create_provider
from .recognition import ChunkedRecognizer
from .state import SessionContext
from .types import STT_PROVIDERS, ConfigSnapshot
from .voice_activation import VoiceActivationEngine


# Toggles manual recording (voice activation mode) or dictation (streaming mode)
TOGGLE_HOTKEY = "<ctrl>+<alt>+space"

# Global state
config: Config
metrics: MetricsWriter
providers: ProviderRegistry
monitor: AppContextMonitor
audio_engine: Optional[AudioEngine] = None
voice_activation: Optional[VoiceActivationEngine] = None
pipeline: Optional[RecordingPipeline] = None
dictation: Optional[StreamingDictationSession] = None
recognizer: Optional[ChunkedRecognizer] = None
_hotkeys: Optional[keyboard.GlobalHotKeys] = None
_shutdown_event = threading.Event()


def main():
    """Main entry point."""
    global config, metrics, providers, monitor, _hotkeys

    print(f"FusionScribe v{__version__} starting...")

    config = Config.load()
    try:
        snapshot = config.snapshot()
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)

    print(f"  Mode: {snapshot.mode}")
    print(f"  STT provider: {snapshot.stt_provider_id}")

    metrics = get_metrics(config.metrics_file)

    providers = ProviderRegistry()
    _init_providers(providers, snapshot)

    if snapshot.fusion.enabled:
        check = check_fusion_configuration(snapshot.fusion, snapshot)
        print(f"  Fusion: {snapshot.fusion.strategy} with {', '.join(check.available_providers) or 'no providers'}")
        for error in check.errors:
            print(f"    {error}")

    context = SessionContext()
    monitor = AppContextMonitor(context, config.snapshot, metrics=metrics)
    monitor.update_active_application()
    monitor.start()

    if snapshot.mode == "streaming-dictation":
        _start_streaming_dictation(context, snapshot)
    else:
        _start_voice_activation(context, snapshot)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    _hotkeys = keyboard.GlobalHotKeys({TOGGLE_HOTKEY: on_toggle})
    _hotkeys.start()

    print(f"Ready! Press {TOGGLE_HOTKEY} to toggle recording.")
    print("Press Ctrl+C to quit.")

    try:
        while not _shutdown_event.wait(0.5):
            pass
    finally:
        shutdown()


def _init_providers(registry: ProviderRegistry, snapshot: ConfigSnapshot) -> None:
    """Register every STT provider that has an API key."""
    timeout = snapshot.fusion.timeout_ms / 1000
    for name in STT_PROVIDERS:
        if not snapshot.api_key_for(name):
            print(f"  Provider {name}: no API key")
            continue
        try:
            provider = create_provider(name, snapshot, timeout=timeout)
            registry.register(provider)
        except Exception as e:
            print(f"  Failed to init provider {name}: {e}")


def _start_voice_activation(context: SessionContext, snapshot: ConfigSnapshot) -> None:
    global audio_engine, pipeline, voice_activation

    audio_engine = AudioEngine(sample_rate=snapshot.sample_rate, input_device=snapshot.input_device)
    pipeline = RecordingPipeline(
        context,
        audio_engine,
        providers,
        monitor.effective_config,
        TextInserter(),
        post_process=post_process_transcript,
        metrics=metrics,
    )
    voice_activation = VoiceActivationEngine(
        context, pipeline, snapshot.voice_activation, metrics=metrics,
    )

    audio_engine.on_level = voice_activation.on_audio_level
    audio_engine.on_error = _on_audio_error
    audio_engine.initialize()

    if voice_activation.start():
        print(f"  Voice activation listening (sensitivity {snapshot.voice_activation.sensitivity})")


def _on_audio_error(error: Exception) -> None:
    """Audio stream died: stop listening and tell the user."""
    if voice_activation is not None:
        voice_activation.on_audio_error(error)
    notify(f"Microphone error: {error}")


def _start_streaming_dictation(context: SessionContext, snapshot: ConfigSnapshot) -> None:
    global recognizer, dictation

    provider = providers.get(snapshot.stt_provider_id)
    if provider is None:
        print(f"Provider {snapshot.stt_provider_id} is not available for dictation")
        sys.exit(1)

    settings = snapshot.streaming_dictation
    recognizer = ChunkedRecognizer(
        provider,
        sample_rate=snapshot.sample_rate,
        input_device=snapshot.input_device,
        interim_results=settings.interim_results,
    )
    dictation = StreamingDictationSession(
        context, recognizer, TextInserter(), settings, metrics=metrics,
    )
    if settings.enabled:
        dictation.start()


def on_toggle() -> None:
    """Hotkey pressed."""
    if dictation is not None:
        if dictation.is_active:
            dictation.stop()
        else:
            dictation.start()
        return

    if pipeline is not None:
        if not pipeline.stop_manual():
            pipeline.start_manual()


def shutdown() -> None:
    """Clean shutdown."""
    print("\nShutting down...")

    if _hotkeys:
        _hotkeys.stop()

    monitor.stop()

    if voice_activation:
        voice_activation.stop()
    if dictation:
        dictation.stop()
    if recognizer:
        recognizer.close()
    if audio_engine:
        audio_engine.shutdown()

    providers.shutdown()
    metrics.shutdown()

    print("Goodbye!")


def _signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM."""
    _shutdown_event.set()


if __name__ == "__main__":
    main()
