"""
Voice activation: start and stop recordings from the live audio level.

Hysteresis keeps the engine from flapping: voice is a level above the
sensitivity, silence is a level at or below 30% of it, and only the edges
between the two count. A silence edge arms a timer; the recording stops when
it fires, provided the minimum duration has passed. A maximum duration is
enforced on every level update regardless of the timer.
"""

import threading
import time
from typing import Callable, Literal, Optional, Protocol

from .metrics import MetricsWriter, log_recording_started, log_recording_stopped
from .scheduler import ScheduledTask, Scheduler, ThreadingScheduler
from .state import SessionContext
from .types import VoiceActivationConfig


VoiceState = Literal["idle", "listening", "recording", "silence_pending"]

SILENCE_RATIO = 0.3


class RecordingSink(Protocol):
    """Receives capture start/stop from the engine (see pipeline.RecordingPipeline)."""

    def begin_capture(self) -> None: ...

    def finalize_capture(self) -> None: ...


class VoiceActivationEngine:
    """
    Hands-free recording state machine.

    idle -> listening -> recording <-> silence_pending -> listening ... -> idle

    Audio levels and timer callbacks may arrive on different threads; all
    transitions happen under one lock. Callbacks never raise.

    Usage:
        engine = VoiceActivationEngine(context, pipeline, config.voice_activation)
        audio_engine.on_level = engine.on_audio_level
        audio_engine.on_error = engine.on_audio_error
        engine.start()
    """

    OWNER = "voice-activation"

    def __init__(
        self,
        context: SessionContext,
        sink: RecordingSink,
        config: Optional[VoiceActivationConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsWriter] = None,
    ):
        self.context = context
        self.sink = sink
        self.config = config or VoiceActivationConfig()
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock
        self.metrics = metrics

        self.state: VoiceState = "idle"
        self.audio_level: float = 0.0
        self.recording_start_time: float = 0.0

        self._voice_active = False          # hysteresis edge state
        self._silence_task: Optional[ScheduledTask] = None
        self._silence_generation = 0
        self._lock = threading.RLock()

    @property
    def is_listening(self) -> bool:
        return self.state != "idle"

    @property
    def is_recording(self) -> bool:
        return self.state in ("recording", "silence_pending")

    def start(self, config: Optional[VoiceActivationConfig] = None) -> bool:
        """
        Begin listening for voice.

        Args:
            config: Effective voice activation config (keeps the current one if None)

        Returns:
            False if voice activation is disabled
        """
        with self._lock:
            if config is not None:
                self.config = config
            if not self.config.enabled:
                print("[VoiceActivation] Disabled in config, not starting")
                return False

            if self.is_recording:
                self._finish_recording("restart")

            self._cancel_silence_timer()
            self.recording_start_time = 0.0
            self._voice_active = False
            self.state = "listening"

        print(f"[VoiceActivation] Started (sensitivity {self.config.sensitivity})")
        return True

    def stop(self) -> None:
        """Stop listening. Finalizes an active recording. Safe to call when idle."""
        with self._lock:
            self._cancel_silence_timer()
            if self.state == "idle":
                return
            if self.is_recording:
                self._finish_recording("stop")
            self._voice_active = False
            self.state = "idle"

        print("[VoiceActivation] Stopped")

    def on_audio_level(self, level: float) -> None:
        """Handle one AudioLevel sample (0-100)."""
        try:
            self._handle_level(level)
        except Exception as e:
            print(f"[VoiceActivation] Error handling audio level: {e}")

    def on_audio_error(self, error: Exception) -> None:
        """Audio stream failed: report and revert to idle. The caller decides on retries."""
        print(f"[VoiceActivation] Audio error: {error}")
        try:
            with self._lock:
                self._cancel_silence_timer()
                if self.is_recording:
                    self._finish_recording("error")
                self._voice_active = False
                self.state = "idle"
        except Exception as e:
            print(f"[VoiceActivation] Error while reverting to idle: {e}")

    def get_status(self) -> dict:
        with self._lock:
            return {
                "is_listening": self.is_listening,
                "is_recording": self.is_recording,
                "state": self.state,
                "audio_level": self.audio_level,
            }

    def _handle_level(self, level: float) -> None:
        with self._lock:
            self.audio_level = level
            self.context.set_audio_level(level)

            if self.state == "idle":
                return

            # Hard ceiling, independent of the silence timer
            if self.is_recording and self._elapsed_ms() >= self.config.max_recording_duration_ms:
                print("[VoiceActivation] Maximum recording duration reached, stopping...")
                self._finish_recording("max_duration")

            sensitivity = self.config.sensitivity
            voice_detected = level > sensitivity
            silence_detected = level <= sensitivity * SILENCE_RATIO

            if voice_detected and not self._voice_active:
                self._voice_active = True
                self._on_voice_detected()
            elif silence_detected and self._voice_active:
                self._voice_active = False
                self._on_silence_detected()

    def _on_voice_detected(self) -> None:
        """Rising edge. Must hold lock."""
        # Cancelling a pending timer puts silence_pending back to recording
        self._cancel_silence_timer()

        if self.state == "listening":
            self._begin_recording()

    def _on_silence_detected(self) -> None:
        """Falling edge. Must hold lock."""
        if self.state != "recording" or self._silence_task is not None:
            return

        self.state = "silence_pending"
        self._silence_generation += 1
        generation = self._silence_generation
        self._silence_task = self.scheduler.schedule(
            self.config.silence_threshold_ms / 1000,
            lambda: self._on_silence_timeout(generation),
        )

    def _on_silence_timeout(self, generation: int) -> None:
        """Silence timer fired (timer thread)."""
        with self._lock:
            # A cancel may race with the timer thread waking up
            if generation != self._silence_generation or self._silence_task is None:
                return
            self._silence_task = None

            if self.state != "silence_pending":
                return

            if self._elapsed_ms() >= self.config.min_recording_duration_ms:
                print("[VoiceActivation] Silence detected, stopping recording...")
                self._finish_recording("silence")
            else:
                # Too short to stop; keep recording
                self.state = "recording"

    def _begin_recording(self) -> None:
        """Must hold lock."""
        if self.context.try_begin_recording(self.OWNER) is None:
            print(f"[VoiceActivation] Recording already in progress "
                  f"({self.context.recording_owner()}), ignoring voice")
            return

        print("[VoiceActivation] Voice detected, starting recording...")
        self.state = "recording"
        self.recording_start_time = self.clock()
        log_recording_started(self.metrics, self.OWNER)

        try:
            self.sink.begin_capture()
        except Exception as e:
            print(f"[VoiceActivation] Failed to begin capture: {e}")

    def _finish_recording(self, reason: str) -> None:
        """End the active recording and go back to listening. Must hold lock."""
        self._cancel_silence_timer()
        duration_ms = self._elapsed_ms()
        self.state = "listening"

        try:
            self.sink.finalize_capture()
        except Exception as e:
            print(f"[VoiceActivation] Failed to finalize capture: {e}")
        finally:
            self.context.end_recording(self.OWNER)

        log_recording_stopped(self.metrics, self.OWNER, reason, duration_ms)

    def _cancel_silence_timer(self) -> None:
        """Must hold lock."""
        self._silence_generation += 1
        if self._silence_task is not None:
            self._silence_task.cancel()
            self._silence_task = None
        if self.state == "silence_pending":
            self.state = "recording"

    def _elapsed_ms(self) -> float:
        return (self.clock() - self.recording_start_time) * 1000
